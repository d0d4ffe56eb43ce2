"""
Context builder tests.

Run with: pytest tests/unit/test_context_builder.py -v
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from models.knowledge import KBResult
from repositories.schema import customers
from services.context_builder import ContextBuilder, ContextOptions, format_date
from utils.error_handling import NotFoundError


@pytest.fixture
def seeded(processor, make_event):
    """One customer with purchases, work orders, notes and a contact."""
    processor.process_event(
        make_event(
            "contact",
            timestamp=1_700_000_000,
            data={"email": "jane@example.com", "name": "Jane Doe", "title": "Intro call"},
        )
    )
    processor.process_event(
        make_event(
            "purchase",
            timestamp=1_700_000_100,
            data={"purchase_id": "p1", "product_name": "Headphones", "total": 100.0},
        )
    )
    processor.process_event(
        make_event(
            "purchase",
            timestamp=1_700_000_200,
            data={"purchase_id": "p2", "product_name": "Case", "total": 20.0},
        )
    )
    processor.process_event(
        make_event(
            "repair",
            timestamp=1_700_000_300,
            data={"work_order_id": "WO-1", "issue_description": "Left ear silent", "priority": "low"},
        )
    )
    processor.process_event(
        make_event(
            "work_order",
            timestamp=1_700_000_350,
            data={"work_order_id": "WO-2", "issue_description": "Battery", "priority": "high"},
        )
    )
    processor.process_event(
        make_event(
            "work_order",
            timestamp=1_700_000_400,
            data={"work_order_id": "WO-3", "status": "completed"},
        )
    )
    processor.process_event(
        make_event("note", timestamp=1_700_000_500, data={"content": "VIP prospect"})
    )
    processor.process_event(
        make_event(
            "note",
            timestamp=1_700_000_600,
            data={"content": "Never call before 9am", "importance": "critical"},
        )
    )
    return "cust_1"


class TestBuildContext:
    def test_sections_present(self, store, seeded):
        context = ContextBuilder(store).build_context(seeded)

        assert context.customer.name == "Jane Doe"
        assert context.relationship.duration_days >= 0
        assert len(context.recent_activity) == 8
        assert context.last_interaction.event_type == "note"

    def test_purchase_stats_are_recomputed(self, store, seeded):
        context = ContextBuilder(store).build_context(seeded)

        stats = context.purchases.stats
        assert stats.total_purchases == 2
        assert stats.total_spent == pytest.approx(120.0)
        assert stats.avg_purchase == pytest.approx(60.0)
        assert stats.last_purchase_date == 1_700_000_200
        assert stats.lifetime_value_drift == pytest.approx(0.0)
        assert [p.id for p in context.purchases.recent] == ["p2", "p1"]

    def test_drift_is_visible_when_accumulator_diverges(self, store, seeded):
        with store.begin() as conn:
            conn.execute(update(customers).where(customers.c.id == seeded).values(lifetime_value=500))

        context = ContextBuilder(store).build_context(seeded)

        assert context.purchases.stats.total_spent == pytest.approx(120.0)
        assert context.purchases.stats.lifetime_value_drift == pytest.approx(380.0)

    def test_work_orders_partitioned(self, store, seeded):
        context = ContextBuilder(store).build_context(seeded)

        assert {w.id for w in context.work_orders.recent} == {"WO-1", "WO-2", "WO-3"}
        assert [w.id for w in context.work_orders.open] == ["WO-2", "WO-1"]

    def test_knowledge_partitioned(self, store, seeded):
        context = ContextBuilder(store).build_context(seeded)

        assert [n.content for n in context.knowledge.all] == [
            "Never call before 9am",
            "VIP prospect",
        ]
        assert [n.content for n in context.knowledge.critical] == ["Never call before 9am"]

    def test_summary_is_templated(self, store, seeded):
        summary = ContextBuilder(store).build_context(seeded).summary

        assert summary.startswith("### Customer Profile\nName: Jane Doe")
        assert "Lifetime Value: $120.00" in summary
        assert "Total Spent: $120.00" in summary
        assert "### Open Work Orders (2)" in summary
        assert "[CRITICAL] observation: Never call before 9am" in summary

    def test_lookup_by_email(self, store, seeded):
        context = ContextBuilder(store).build_context("JANE@example.com")

        assert context.customer.id == seeded

    def test_sections_can_be_disabled(self, store, seeded):
        options = ContextOptions(
            include_events=False,
            include_purchases=False,
            include_work_orders=False,
            include_knowledge=False,
        )

        context = ContextBuilder(store).build_context(seeded, options)

        assert context.recent_activity is None
        assert context.purchases is None
        assert "### Purchase History" not in context.summary

    def test_events_limit(self, store, seeded):
        context = ContextBuilder(store).build_context(seeded, ContextOptions(events_limit=2))

        assert len(context.recent_activity) == 2
        assert context.recent_activity[0].event_date == 1_700_000_600

    def test_unknown_customer_raises(self, store):
        with pytest.raises(NotFoundError):
            ContextBuilder(store).build_context("nobody")

    def test_build_is_read_only(self, store, seeded, count_rows):
        before = count_rows()

        ContextBuilder(store).build_context(seeded)
        ContextBuilder(store).build_context(seeded)

        assert count_rows() == before

    def test_related_knowledge_uses_search_client(self, store, seeded):
        search = MagicMock()
        search.search_knowledge.return_value = [
            KBResult(content="Warranty covers batteries", score=0.9, source="s3://kb/w.md")
        ]

        context = ContextBuilder(store, knowledge_search=search).build_context(
            seeded, ContextOptions(knowledge_query="battery warranty")
        )

        search.search_knowledge.assert_called_once_with("customer:cust_1", "battery warranty", 3)
        assert context.related_knowledge[0].content == "Warranty covers batteries"

    def test_timeline_filters_by_type(self, store, seeded):
        events = ContextBuilder(store).get_customer_timeline(seeded, event_types=["purchase"])

        assert [e.event_date for e in events] == [1_700_000_200, 1_700_000_100]


class TestFormatDate:
    def test_renders_epoch_seconds(self):
        assert format_date(1_700_000_000) == "Nov 14, 2023 22:13 UTC"

    @pytest.mark.parametrize("timestamp", [None, 0, 1_700_000_000_000_000.0])
    def test_unrenderable_values_show_placeholder(self, timestamp):
        assert format_date(timestamp) == "N/A"

    def test_out_of_range_warranty_does_not_break_context(self, processor, store, make_event):
        processor.process_event(
            make_event(
                "purchase",
                data={"purchase_id": "p1", "total": 10, "warranty_expires": 1e300},
            )
        )

        context = ContextBuilder(store).build_context("cust_1")

        assert context.purchases.recent[0].warranty_expires == 1e300
