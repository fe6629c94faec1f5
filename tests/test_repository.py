"""Repository test cases (sync session)."""
import pytest
from sqlalchemy import event, func
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import selectinload
from sqlmodel import col

from apps.catalog.models import Category, Widget, WidgetTag
from unitofwork.exceptions import PagingArgumentError
from unitofwork.repository import EntityState, TrackingType


@pytest.fixture
def widgets(uow):
    return uow.get_repository(Widget)


@pytest.fixture
def count_selects(engine):
    """Counts SELECT statements sent to the database while the test runs."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)


class TestReads:
    """Composed reads."""

    def test_insert_save_find_round_trip(self, uow, widgets):
        widget = widgets.insert(Widget(name="sprocket", price=2.5))

        assert uow.save_changes() == 1
        assert widget.id is not None
        found = widgets.find(widget.id)
        assert found is widget
        assert found.name == "sprocket"

    def test_find_missing_returns_none(self, widgets):
        assert widgets.find(404) is None

    def test_get_list_filters_and_orders(self, widgets, seed_widgets):
        seed_widgets(5)

        result = widgets.get_list(
            predicate=Widget.price >= 3,
            order_by=lambda statement: statement.order_by(col(Widget.price).desc()),
        )

        assert [w.name for w in result] == ["widget-05", "widget-04", "widget-03"]

    def test_no_tracking_results_are_detached(self, uow, widgets, seed_widgets):
        seed_widgets(2)

        result = widgets.get_list()

        assert len(result) == 2
        assert all(uow.get_entity_state(w) is EntityState.DETACHED for w in result)

    def test_tracking_results_stay_attached(self, uow, widgets, seed_widgets):
        seed_widgets(2)

        result = widgets.get_list(tracking=TrackingType.TRACKING)

        assert all(w in uow.session for w in result)
        result[0].price = 99
        assert uow.get_entity_state(result[0]) is EntityState.MODIFIED

    def test_no_tracking_keeps_already_tracked_entities(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(2)
        tracked = widgets.find(seeded[0].id)

        result = widgets.get_list(order_by=lambda s: s.order_by(col(Widget.id)))

        assert result[0] is tracked
        assert tracked in uow.session
        assert result[1] not in uow.session

    def test_identity_resolution_coalesces_rows(self, widgets, seed_widgets):
        seed_widgets(3, category="tools")

        result = widgets.get_list(tracking=TrackingType.NO_TRACKING_WITH_IDENTITY_RESOLUTION)

        assert len({id(w.category) for w in result}) == 1

    def test_get_first_or_default(self, widgets, seed_widgets):
        seed_widgets(3)

        first = widgets.get_first_or_default(order_by=lambda s: s.order_by(col(Widget.price).desc()))

        assert first.name == "widget-03"
        assert widgets.get_first_or_default(predicate=Widget.name == "nope") is None

    def test_get_all_is_lazy(self, widgets, seed_widgets, count_selects):
        seed_widgets(2)
        count_selects.clear()

        statement = widgets.get_all(predicate=Widget.price > 1)

        assert count_selects == []
        assert [w.name for w in widgets.materialize(statement)] == ["widget-02"]

    def test_include_loads_navigation(self, widgets, seed_widgets, session_factory):
        seeded = seed_widgets(1)
        with session_factory() as session:
            session.add(WidgetTag(widget_id=seeded[0].id, tag="blue"))
            session.commit()

        widget = widgets.get_first_or_default(include=[selectinload(Widget.tags)])

        assert [t.tag for t in widget.tags] == ["blue"]

    def test_auto_include_and_ignore(self, widgets, seed_widgets):
        seed_widgets(1, category="tools")

        eager = widgets.get_first_or_default()
        plain = widgets.get_first_or_default(ignore_auto_includes=True)

        assert eager.category.name == "tools"
        assert "category" in sa_inspect(plain).unloaded

    def test_projection_single_column(self, widgets, seed_widgets):
        seed_widgets(3)

        names = widgets.get_list(selector=Widget.name, order_by=lambda s: s.order_by(col(Widget.name)))

        assert names == ["widget-01", "widget-02", "widget-03"]

    def test_projection_many_columns(self, widgets, seed_widgets):
        seed_widgets(2)

        rows = widgets.get_list(
            selector=[Widget.name, Widget.price],
            predicate=Widget.price > 1,
        )

        assert [tuple(row) for row in rows] == [("widget-02", 2.0)]

    def test_from_sql(self, uow, seed_widgets):
        seed_widgets(3)
        repository = uow.get_repository(Widget)

        statement = uow.from_sql(Widget, "SELECT * FROM widgets WHERE price > :price", {"price": 1.5})

        assert sorted(w.name for w in repository.materialize(statement)) == ["widget-02", "widget-03"]


class TestPaging:
    """Paged reads."""

    def test_paged_list_counts_filtered_set(self, widgets, seed_widgets):
        seed_widgets(25)

        page = widgets.get_paged_list(
            order_by=lambda s: s.order_by(col(Widget.id)),
            page_index=1,
            page_size=10,
        )

        assert page.total_count == 25
        assert page.total_pages == 3
        assert [w.name for w in page.items][0] == "widget-11"
        assert len(page.items) == 10
        assert page.has_previous_page and page.has_next_page

    def test_paged_list_with_predicate(self, widgets, seed_widgets):
        seed_widgets(25)

        page = widgets.get_paged_list(predicate=Widget.price > 20, page_size=10)

        assert page.total_count == 5
        assert page.total_pages == 1
        assert page.has_next_page is False

    def test_default_page_size(self, widgets, seed_widgets):
        seed_widgets(25)

        page = widgets.get_paged_list()

        assert page.page_size == 20
        assert len(page.items) == 20

    def test_paged_projection(self, widgets, seed_widgets):
        seed_widgets(5)

        page = widgets.get_paged_list(
            selector=Widget.price,
            order_by=lambda s: s.order_by(col(Widget.price)),
            page_index=1,
            page_size=2,
            index_from=1,
        )

        assert page.items == (1.0, 2.0)
        assert page.total_count == 5

    def test_invalid_paging_arguments_fail_before_querying(self, widgets, count_selects):
        with pytest.raises(PagingArgumentError):
            widgets.get_paged_list(page_index=0, index_from=1)
        assert count_selects == []


class TestAggregates:
    """Scalar reads."""

    def test_count_and_exists(self, widgets, seed_widgets):
        seed_widgets(4)

        assert widgets.count() == 4
        assert widgets.long_count(Widget.price > 2) == 2
        assert widgets.exists(Widget.name == "widget-03") is True
        assert widgets.exists(Widget.name == "nope") is False

    def test_min_max_sum_average(self, widgets, seed_widgets):
        seed_widgets(4)

        assert widgets.max(Widget.price) == 4.0
        assert widgets.min(Widget.price, Widget.price > 1) == 2.0
        assert widgets.sum(Widget.price) == 10.0
        assert widgets.average(Widget.price) == 2.5

    def test_aggregates_on_empty_set(self, widgets):
        assert widgets.count() == 0
        assert widgets.max(Widget.price) is None
        assert widgets.average(Widget.price) is None
        assert widgets.sum(Widget.price) is None


class TestWrites:
    """Staged and immediate writes."""

    def test_insert_many(self, uow, widgets):
        created = widgets.insert_many(Widget(name=f"w{i}") for i in range(3))

        assert len(created) == 3
        assert uow.save_changes() == 3
        assert widgets.count() == 3

    def test_writes_are_staged_until_save(self, uow, widgets, session_factory):
        widgets.insert(Widget(name="pending"))

        with session_factory() as other:
            assert other.get(Widget, 1) is None
        assert uow.save_changes() == 1

    def test_update_detached_instance(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(1)[0]
        seeded.price = 42

        tracked = widgets.update(seeded)

        assert tracked is not seeded
        assert uow.save_changes() == 1
        assert widgets.get_first_or_default().price == 42

    def test_update_many(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(2)
        for widget in seeded:
            widget.name = widget.name.upper()

        widgets.update_many(seeded)

        assert uow.save_changes() == 2
        assert sorted(widgets.get_list(selector=Widget.name)) == ["WIDGET-01", "WIDGET-02"]

    def test_delete_tracked_entity(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(2)
        tracked = widgets.find(seeded[0].id)

        widgets.delete(tracked)

        assert uow.get_entity_state(tracked) is EntityState.DELETED
        assert uow.save_changes() == 1
        assert widgets.count() == 1

    def test_delete_detached_entity(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(2)

        widgets.delete(seeded[1])

        assert uow.save_changes() == 1
        assert widgets.get_list(selector=Widget.name) == ["widget-01"]

    def test_delete_pending_entity_forgets_it(self, uow, widgets):
        widget = widgets.insert(Widget(name="never"))

        widgets.delete(widget)

        assert uow.get_entity_state(widget) is EntityState.DETACHED
        assert uow.save_changes() == 0

    def test_delete_many(self, uow, widgets, seed_widgets):
        widgets.delete_many(seed_widgets(3))

        assert uow.save_changes() == 3
        assert widgets.count() == 0

    def test_delete_by_id_without_loading(self, uow, seed_widgets, session_factory, count_selects):
        with session_factory() as session:
            category = Category(name="empty")
            session.add(category)
            session.commit()
        categories = uow.get_repository(Category)
        count_selects.clear()

        categories.delete_by_id(category.id)

        assert count_selects == []
        assert uow.save_changes() == 1
        assert categories.count() == 0

    def test_delete_by_id_uses_tracked_instance(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(1)
        tracked = widgets.find(seeded[0].id)

        widgets.delete_by_id(seeded[0].id)

        assert uow.get_entity_state(tracked) is EntityState.DELETED
        assert uow.save_changes() == 1

    def test_delete_by_composite_key_falls_back_to_find(self, uow, seed_widgets, session_factory):
        widget = seed_widgets(1)[0]
        with session_factory() as session:
            session.add_all([WidgetTag(widget_id=widget.id, tag="a"), WidgetTag(widget_id=widget.id, tag="b")])
            session.commit()
        tags = uow.get_repository(WidgetTag)

        tags.delete_by_id((widget.id, "a"))
        tags.delete_by_id((widget.id, "missing"))

        assert uow.save_changes() == 1
        assert tags.get_list(selector=WidgetTag.tag) == ["b"]

    def test_delete_by_id_and_delete_remove_the_same_row(self, seed_widgets, session_factory):
        from unitofwork.repository import UnitOfWork

        seeded = seed_widgets(2)
        with UnitOfWork(session_factory()) as by_key, UnitOfWork(session_factory()) as by_entity:
            by_key.get_repository(Widget).delete_by_id(seeded[0].id)
            by_key.save_changes()
            entity = by_entity.get_repository(Widget).find(seeded[1].id)
            by_entity.get_repository(Widget).delete(entity)
            by_entity.save_changes()

            assert by_entity.get_repository(Widget).count() == 0

    def test_execute_update_skips_tracked_instances(self, uow, widgets, seed_widgets):
        seeded = seed_widgets(3)
        tracked = widgets.find(seeded[0].id)

        updated = widgets.execute_update({"price": 0.0}, Widget.price < 3)

        assert updated == 2
        assert tracked.price == 1.0
        assert widgets.count(Widget.price == 0) == 2

    def test_execute_delete(self, uow, widgets, seed_widgets):
        seed_widgets(4)

        assert widgets.execute_delete(Widget.price > 2) == 2
        assert uow.save_changes() == 0
        assert widgets.count() == 2

    def test_sum_over_expression(self, widgets, seed_widgets):
        seed_widgets(3)

        assert widgets.sum(func.round(Widget.price * 2)) == 12
