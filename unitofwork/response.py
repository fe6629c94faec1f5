from typing import Any, Callable, Optional
from pydantic import BaseModel
from unitofwork.repository.paged import PagedList

class ResponseModel(BaseModel):
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None

    @staticmethod
    def success(data: Any = None):
        return {"code": 200, "message": "success", "data": data}

    @staticmethod
    def fail(code: int = 400, message: str = "error", data: Any = None):
        return {"code": code, "message": message, "data": data}

    @staticmethod
    def paged(page: PagedList, item_dump: Optional[Callable[[Any], Any]] = None):
        """Success envelope around a page; `item_dump` turns each item into JSON-ready data."""
        data = page.to_dict()
        if item_dump is not None:
            data["items"] = [item_dump(item) for item in page.items]
        return ResponseModel.success(data=data)
