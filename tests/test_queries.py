"""
Tests for the financial year aggregator and the ledger query facade.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger_engine.config import LedgerSettings
from ledger_engine.engine import (
    ConsistencyViolation,
    CustomerNotFoundError,
    InvalidDateError,
    TransactionNotFoundError,
)
from ledger_engine.models.amount import Amount, Polarity
from ledger_engine.models.audit import AuditEventType
from ledger_engine.models.ledger import CustomerDraft
from ledger_engine.queries import FinancialYearAggregator, LedgerQueryFacade, month_position

from conftest import make_customer


class TestAggregator:
    """Tests for period summaries."""

    @pytest.mark.asyncio
    async def test_empty_year_carries_prior_balance(self, service, storage, customer):
        """Test a financial year with no transactions."""
        await service.create_debit(customer.id, "750", date(2023, 6, 1))

        async with storage.unit_of_work() as uow:
            stored_customer = await uow.get_customer(customer.id)
            summary = await FinancialYearAggregator().summarize_year(uow, stored_customer, 2024)

        assert summary.transaction_count == 0
        assert summary.total_credit == Decimal("0.00")
        assert summary.opening_balance == Amount.debit("750")
        assert summary.closing_balance == summary.opening_balance
        assert summary.date_from == date(2024, 4, 1)
        assert summary.date_to == date(2025, 3, 31)

    @pytest.mark.asyncio
    async def test_year_totals_and_balances(self, service, storage, debtor):
        """Test totals, net, opening and closing inside one year."""
        await service.create_credit(debtor.id, "300", date(2024, 3, 31))  # FY 2023
        await service.create_credit(debtor.id, "1500", date(2024, 4, 1))
        await service.create_debit(debtor.id, "200", date(2024, 12, 1))
        await service.create_debit(debtor.id, "100", date(2025, 1, 10))

        async with storage.unit_of_work() as uow:
            stored_customer = await uow.get_customer(debtor.id)
            summary = await FinancialYearAggregator().summarize_year(uow, stored_customer, 2024)

        assert summary.transaction_count == 3
        assert summary.total_credit == Decimal("1500.00")
        assert summary.total_debit == Decimal("300.00")
        assert summary.net == Decimal("1200.00")
        assert str(summary.opening_balance) == "700.00 DR"
        assert str(summary.closing_balance) == "500.00 CR"

    @pytest.mark.asyncio
    async def test_open_range_starts_from_opening_balance(self, service, storage, debtor):
        """Test a range without a start date."""
        await service.create_credit(debtor.id, "100", date(2024, 5, 1))

        async with storage.unit_of_work() as uow:
            stored_customer = await uow.get_customer(debtor.id)
            summary = await FinancialYearAggregator().summarize_range(
                uow, stored_customer, date_to=date(2024, 4, 30)
            )

        assert summary.transaction_count == 0
        assert summary.opening_balance == Amount.debit("1000")
        assert summary.closing_balance == Amount.debit("1000")

    @pytest.mark.asyncio
    async def test_year_wise_fills_gaps(self, service, storage, customer):
        """Test one summary per year, including empty years."""
        await service.create_credit(customer.id, "100", date(2022, 5, 1))
        await service.create_debit(customer.id, "40", date(2024, 5, 1))

        async with storage.unit_of_work() as uow:
            stored_customer = await uow.get_customer(customer.id)
            years = await FinancialYearAggregator().year_wise(uow, stored_customer)

        assert [y.financial_year for y in years] == [2022, 2023, 2024]
        assert [y.transaction_count for y in years] == [1, 0, 1]
        assert str(years[1].opening_balance) == "100.00 CR"
        assert str(years[1].closing_balance) == "100.00 CR"
        assert str(years[2].closing_balance) == "60.00 CR"

    @pytest.mark.asyncio
    async def test_monthly_breakdown_in_financial_year_order(self, service, storage, customer):
        """Test April-first month ordering."""
        await service.create_credit(customer.id, "10", date(2025, 1, 5))
        await service.create_credit(customer.id, "20", date(2024, 4, 5))
        await service.create_debit(customer.id, "5", date(2024, 4, 6))

        async with storage.unit_of_work() as uow:
            transactions = await uow.list_transactions(customer_id=customer.id)
        months = FinancialYearAggregator().monthly_breakdown(transactions)

        assert [(m.year, m.month_name) for m in months] == [(2024, "April"), (2025, "January")]
        assert months[0].transaction_count == 2
        assert months[0].net == Decimal("15.00")

    def test_month_position(self):
        """Test April is first and March last."""
        assert month_position(4) == 0
        assert month_position(3) == 11


class TestCustomerLedger:
    """Tests for the full customer ledger."""

    @pytest.mark.asyncio
    async def test_ledger_rows(self, service, facade, debtor):
        """Test opening row, entries and totals row."""
        await service.create_credit(debtor.id, "1500", date(2024, 5, 1))
        await service.create_debit(debtor.id, "200", date(2024, 4, 15))

        ledger = await facade.customer_ledger(debtor.id)

        assert ledger.customer_name == "Suresh Stores"
        assert str(ledger.opening_balance) == "1000.00 DR"
        assert [e.balance_label for e in ledger.entries] == ["1200.00 DR", "300.00 CR"]
        assert ledger.entries[0].debit == Decimal("200.00")
        assert ledger.entries[1].credit == Decimal("1500.00")
        assert ledger.total_credit == Decimal("1500.00")
        assert ledger.total_debit == Decimal("200.00")
        assert str(ledger.closing_balance) == "300.00 CR"

    @pytest.mark.asyncio
    async def test_ledger_for_date_range(self, service, facade, customer):
        """Test that a ranged ledger opens with the carried balance."""
        await service.create_credit(customer.id, "100", date(2024, 4, 1))
        await service.create_debit(customer.id, "30", date(2024, 5, 1))
        await service.create_debit(customer.id, "20", date(2024, 6, 1))

        ledger = await facade.customer_ledger(
            customer.id, date_from=date(2024, 5, 1), date_to=date(2024, 5, 31)
        )

        assert str(ledger.opening_balance) == "100.00 CR"
        assert len(ledger.entries) == 1
        assert str(ledger.closing_balance) == "70.00 CR"

    @pytest.mark.asyncio
    async def test_deleted_entries_hidden(self, service, facade, customer):
        """Test that soft-deleted rows never appear."""
        txn = await service.create_credit(customer.id, "100", date(2024, 4, 1))
        await service.create_credit(customer.id, "5", date(2024, 4, 2))
        await service.delete_transaction(txn.id)

        ledger = await facade.customer_ledger(customer.id)
        assert txn.id not in [e.transaction_id for e in ledger.entries]
        assert len(ledger.entries) == 1
        assert str(ledger.closing_balance) == "5.00 CR"

    @pytest.mark.asyncio
    async def test_reversed_range_rejected(self, facade, customer):
        """Test InvalidDateError for date_from after date_to."""
        with pytest.raises(InvalidDateError):
            await facade.customer_ledger(
                customer.id, date_from=date(2024, 6, 1), date_to=date(2024, 5, 1)
            )

    @pytest.mark.asyncio
    async def test_unknown_customer(self, facade):
        """Test CustomerNotFoundError on reads."""
        with pytest.raises(CustomerNotFoundError):
            await facade.customer_ledger(42)


class TestConsistencyOnRead:
    """Tests for the read-side balance check."""

    @pytest.mark.asyncio
    async def test_corrupted_balance_raises_and_is_logged(
        self, service, facade, storage, audit_storage, customer
    ):
        """Test that a stale stored balance surfaces as ConsistencyViolation."""
        txn = await service.create_credit(customer.id, "100", date(2024, 4, 1))
        async with storage.unit_of_work() as uow:
            await uow.save_transaction(
                txn.model_copy(update={"running_balance": Amount.credit("90")})
            )

        with pytest.raises(ConsistencyViolation):
            await facade.customer_summary(customer.id)

        critical = [
            e for e in await audit_storage.get_events_by_customer(customer.id)
            if e.event_type == AuditEventType.CONSISTENCY_VIOLATION
        ]
        assert critical[0].details == {"expected": "100.00 CR", "actual": "90.00 CR"}

        # never corrected on read; an explicit recalculation repairs it
        async with storage.unit_of_work() as uow:
            assert (await uow.get_transaction(txn.id)).running_balance == Amount.credit("90")
        result = await service.recalculate_customer(customer.id)
        assert result.changed == 1
        summary = await facade.customer_summary(customer.id)
        assert str(summary.latest_balance) == "100.00 CR"


class TestSummaries:
    """Tests for per-customer summaries."""

    @pytest.mark.asyncio
    async def test_customer_summary(self, service, facade, customer):
        """Test latest balance and last transaction date."""
        await service.create_credit(customer.id, "100", date(2024, 4, 1))
        await service.create_debit(customer.id, "130", date(2024, 8, 1))

        summary = await facade.customer_summary(customer.id)

        assert str(summary.latest_balance) == "30.00 DR"
        assert summary.last_transaction_date == date(2024, 8, 1)
        assert summary.transaction_count == 2
        assert summary.is_settled is False

    @pytest.mark.asyncio
    async def test_summary_without_transactions(self, service, facade):
        """Test that an empty ledger reports its opening balance."""
        customer = await make_customer(service, opening_balance=Amount.credit("55"))
        summary = await facade.customer_summary(customer.id)
        assert summary.latest_balance == Amount.credit("55")
        assert summary.last_transaction_date is None

    @pytest.mark.asyncio
    async def test_financial_year_and_range_summary(self, service, facade, customer):
        """Test the facade's period summaries."""
        await service.create_credit(customer.id, "100", date(2024, 3, 1))
        await service.create_credit(customer.id, "50", date(2024, 4, 1))

        fy = await facade.financial_year_summary(customer.id, 2024)
        assert fy.financial_year == 2024
        assert fy.transaction_count == 1
        assert str(fy.opening_balance) == "100.00 CR"

        ranged = await facade.range_summary(customer.id, date(2024, 1, 1), date(2024, 12, 31))
        assert ranged.transaction_count == 2
        assert str(ranged.closing_balance) == "150.00 CR"

    @pytest.mark.asyncio
    async def test_customer_year_wise(self, service, facade, customer):
        """Test year-by-year summaries through the facade."""
        await service.create_credit(customer.id, "100", date(2023, 4, 1))
        await service.create_debit(customer.id, "100", date(2024, 4, 1))

        years = await facade.customer_year_wise(customer.id)
        assert [(y.financial_year, str(y.closing_balance)) for y in years] == [
            (2023, "100.00 CR"),
            (2024, "0.00 CR"),
        ]


class TestCrossCustomerReports:
    """Tests for reports spanning all customers."""

    @pytest.mark.asyncio
    async def test_date_range_report(self, service, facade):
        """Test grouping, subtotals and grand totals."""
        busy = await make_customer(service, name="Busy")
        quiet = await make_customer(service, name="Quiet")
        idle = await make_customer(service, name="Idle")
        await service.create_credit(busy.id, "100", date(2024, 5, 1))
        await service.create_debit(busy.id, "40", date(2024, 5, 2))
        await service.create_debit(quiet.id, "10", date(2024, 5, 3))
        await service.create_credit(idle.id, "999", date(2024, 1, 1))

        report = await facade.date_range_report(date(2024, 5, 1), date(2024, 5, 31))

        assert [g.customer_name for g in report.groups] == ["Busy", "Quiet"]
        assert report.groups[0].subtotal.transaction_count == 2
        assert str(report.groups[0].subtotal.closing_balance) == "60.00 CR"
        assert report.total_transactions == 3
        assert report.total_credit == Decimal("100.00")
        assert report.total_debit == Decimal("50.00")
        assert report.net == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_deleted_customers_excluded(self, service, facade):
        """Test that soft-deleted customers drop out of reports."""
        gone = await make_customer(service, name="Gone")
        await service.create_credit(gone.id, "100", date(2024, 5, 1))
        await service.delete_customer(gone.id)

        report = await facade.date_range_report(date(2024, 5, 1), date(2024, 5, 31))
        assert report.groups == []

    @pytest.mark.asyncio
    async def test_year_wise_report(self, service, facade):
        """Test monthly breakdown and customer ordering by net movement."""
        small = await make_customer(service, name="Small")
        large = await make_customer(service, name="Large")
        await service.create_credit(small.id, "10", date(2024, 4, 10))
        await service.create_debit(large.id, "500", date(2025, 1, 2))
        await service.create_credit(large.id, "1", date(2023, 4, 1))

        report = await facade.year_wise_report(2024)

        assert report.total_transactions == 2
        assert [s.customer_id for s in report.customers] == [large.id, small.id]
        assert str(report.customers[0].opening_balance) == "1.00 CR"
        assert [m.month_name for m in report.monthly] == ["April", "January"]
        assert report.net == Decimal("-490.00")

    @pytest.mark.asyncio
    async def test_outstanding_balances(self, service, facade):
        """Test receivable/payable split and exclusions."""
        owes = await make_customer(service, name="Owes")
        owed = await make_customer(service, name="Owed")
        square = await make_customer(service, name="Square")
        settled = await make_customer(service, name="Settled")
        await service.create_credit(owes.id, "300", date(2024, 5, 1))
        await service.create_debit(owed.id, "120", date(2024, 5, 1))
        await service.create_credit(square.id, "5", date(2024, 5, 1))
        await service.create_debit(square.id, "5", date(2024, 5, 2))
        await service.create_credit(settled.id, "70", date(2024, 5, 1))
        await service.settle_customer(settled.id)

        report = await facade.outstanding_balances()

        assert [(b.customer_name, b.balance_type) for b in report.balances] == [
            ("Owes", "receivable"),
            ("Owed", "payable"),
        ]
        assert report.total_receivable == Decimal("300.00")
        assert report.total_payable == Decimal("120.00")
        assert report.net_position == Decimal("180.00")

        payable = await facade.outstanding_balances(kind="payable")
        assert [b.customer_name for b in payable.balances] == ["Owed"]

    @pytest.mark.asyncio
    async def test_outstanding_opening_balance_only(self, service, facade):
        """Test that an opening balance alone counts as outstanding."""
        await service.create_customer(CustomerDraft(
            name="Carried", opening_balance=Amount.debit("45")
        ))
        report = await facade.outstanding_balances()
        assert report.balances[0].balance_type == "payable"
        assert report.balances[0].last_transaction_date is None

class TestSerializedReadModels:
    """Tests that derived figures survive model_dump."""

    @pytest.mark.asyncio
    async def test_ledger_dump_carries_net_and_labels(self, service, facade, debtor):
        """Test net and balance_label in the dumped ledger."""
        await service.create_credit(debtor.id, "1500", date(2024, 5, 1))

        dumped = (await facade.customer_ledger(debtor.id)).model_dump()

        assert dumped["net"] == Decimal("1500.00")
        assert dumped["entries"][0]["balance_label"] == "500.00 CR"
        assert dumped["entries"][0]["balance_display"] == "₹500.00 CR"

    @pytest.mark.asyncio
    async def test_report_dumps_carry_net_position(self, service, facade):
        """Test net_position of outstanding balances and the balance summary."""
        owes = await make_customer(service, name="Owes")
        await service.create_credit(owes.id, "300", date(2024, 5, 1))

        outstanding = (await facade.outstanding_balances()).model_dump(mode="json")
        summary = (await facade.balance_summary()).model_dump()

        assert outstanding["net_position"] == "300.00"
        assert summary["net_position"] == Decimal("300.00")
        assert summary["total_customers"] == 1


class TestCurrencySymbol:
    """Tests for the configured currency symbol in displayed balances."""

    @pytest.mark.asyncio
    async def test_symbol_from_settings(self, service, storage, clock, debtor):
        """Test that every display field uses LedgerSettings.currency_symbol."""
        await service.create_debit(debtor.id, "234.5", date(2024, 5, 1))
        rupees = LedgerQueryFacade(
            storage, settings=LedgerSettings(currency_symbol="Rs "), clock=clock
        )

        ledger = await rupees.customer_ledger(debtor.id)
        summary = await rupees.customer_summary(debtor.id)
        outstanding = await rupees.outstanding_balances()
        balances = await rupees.balance_summary()
        recent = await rupees.recent_transactions()

        assert ledger.entries[0].balance_display == "Rs 1,234.50 DR"
        assert summary.latest_balance_display == "Rs 1,234.50 DR"
        assert outstanding.balances[0].balance_display == "Rs 1,234.50 DR"
        assert balances.customers[0].current_balance_display == "Rs 1,234.50 DR"
        assert recent[0].balance_display == "Rs 1,234.50 DR"


class TestTransactionQueries:
    """Tests for single-transaction lookup and filtered listings."""

    async def _two_customers(self, service):
        first = await make_customer(service, name="First")
        second = await make_customer(service, name="Second")
        await service.create_credit(first.id, "100", date(2024, 3, 1))
        await service.create_debit(first.id, "40", date(2024, 5, 2))
        await service.create_debit(second.id, "10", date(2024, 5, 3))
        return first, second

    @pytest.mark.asyncio
    async def test_get_transaction(self, service, facade, customer):
        """Test a lookup naming its customer."""
        txn = await service.create_credit(customer.id, "100", date(2024, 5, 1))

        view = await facade.get_transaction(txn.id)

        assert view.transaction_id == txn.id
        assert view.customer_name == "Ramesh Traders"
        assert view.balance_label == "100.00 CR"

    @pytest.mark.asyncio
    async def test_get_transaction_not_found(self, service, facade, customer):
        """Test missing, soft-deleted and orphaned transactions."""
        deleted = await service.create_credit(customer.id, "5", date(2024, 5, 1))
        await service.delete_transaction(deleted.id)
        orphan_owner = await make_customer(service, name="Gone")
        orphan = await service.create_credit(orphan_owner.id, "5", date(2024, 5, 1))
        await service.delete_customer(orphan_owner.id)

        for transaction_id in (999, deleted.id, orphan.id):
            with pytest.raises(TransactionNotFoundError):
                await facade.get_transaction(transaction_id)

    @pytest.mark.asyncio
    async def test_list_newest_first(self, service, facade):
        """Test ordering across customers by date, then id, descending."""
        first, second = await self._two_customers(service)
        same_day = await service.create_credit(first.id, "1", date(2024, 5, 3))

        views = await facade.list_transactions()

        assert [(v.customer_name, str(v.transaction_date)) for v in views] == [
            ("First", "2024-05-03"),
            ("Second", "2024-05-03"),
            ("First", "2024-05-02"),
            ("First", "2024-03-01"),
        ]
        assert views[0].transaction_id == same_day.id

    @pytest.mark.asyncio
    async def test_list_filters(self, service, facade):
        """Test the customer, financial year, date range and kind filters."""
        first, second = await self._two_customers(service)

        by_customer = await facade.list_transactions(customer_id=second.id)
        by_year = await facade.list_transactions(financial_year=2023)
        by_range = await facade.list_transactions(
            date_from=date(2024, 5, 1), date_to=date(2024, 5, 2)
        )
        debits = await facade.list_transactions(kind=Polarity.DEBIT)
        combined = await facade.list_transactions(customer_id=first.id, kind=Polarity.DEBIT)

        assert [v.customer_id for v in by_customer] == [second.id]
        assert [v.credit for v in by_year] == [Decimal("100.00")]
        assert [v.debit for v in by_range] == [Decimal("40.00")]
        assert [v.customer_name for v in debits] == ["Second", "First"]
        assert [v.balance_label for v in combined] == ["60.00 CR"]

    @pytest.mark.asyncio
    async def test_list_rejects_bad_arguments(self, facade):
        """Test unknown customer and reversed range."""
        with pytest.raises(CustomerNotFoundError):
            await facade.list_transactions(customer_id=404)
        with pytest.raises(InvalidDateError):
            await facade.list_transactions(date_from=date(2024, 6, 1), date_to=date(2024, 5, 1))

    @pytest.mark.asyncio
    async def test_recent_transactions(self, service, facade):
        """Test the limit on the newest-first listing."""
        await self._two_customers(service)

        recent = await facade.recent_transactions(limit=2)

        assert [str(v.transaction_date) for v in recent] == ["2024-05-03", "2024-05-02"]


class TestDashboardReports:
    """Tests for dashboard figures and cross-customer summaries."""

    @pytest.mark.asyncio
    async def test_dashboard_stats(self, service, facade):
        """Test counts, all-time totals and current financial year totals."""
        trader = await make_customer(service, name="Trader")
        settled = await make_customer(service, name="Settled")
        gone = await make_customer(service, name="Gone")
        await service.create_credit(trader.id, "100", date(2024, 3, 1))
        await service.create_debit(trader.id, "40", date(2024, 5, 2))
        await service.create_credit(settled.id, "25", date(2025, 1, 10))
        await service.settle_customer(settled.id)
        await service.create_credit(gone.id, "999", date(2024, 5, 1))
        await service.delete_customer(gone.id)

        stats = await facade.dashboard_stats()

        assert stats.total_customers == 2
        assert stats.active_customers == 1
        assert stats.total_transactions == 3
        assert stats.total_credit == Decimal("125.00")
        assert stats.total_debit == Decimal("40.00")
        assert stats.net_balance == Decimal("85.00")
        assert stats.current_financial_year == 2024
        assert stats.current_year_credit == Decimal("25.00")
        assert stats.current_year_debit == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_top_customers(self, service, facade):
        """Test busiest first, ties by name, empty ledgers left out."""
        for name, count in (("Bravo", 1), ("Alpha", 1), ("Busy", 3), ("Empty", 0)):
            customer = await make_customer(service, name=name)
            for day in range(1, count + 1):
                await service.create_credit(customer.id, "10", date(2024, 5, day))

        top = await facade.top_customers()
        assert [(c.customer_name, c.transaction_count) for c in top] == [
            ("Busy", 3),
            ("Alpha", 1),
            ("Bravo", 1),
        ]
        assert top[0].net == Decimal("30.00")
        assert len(await facade.top_customers(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_balance_summary(self, service, facade, debtor):
        """Test zero balances listed, settled customers left out."""
        square = await make_customer(service, name="Square")
        settled = await make_customer(service, name="Settled", opening_balance=Amount.credit("5"))
        await service.settle_customer(settled.id)
        await service.create_credit(debtor.id, "400", date(2024, 5, 1))

        summary = await facade.balance_summary()

        lines = {b.customer_name: b for b in summary.customers}
        assert sorted(lines) == ["Square", "Suresh Stores"]
        assert str(lines["Suresh Stores"].current_balance) == "600.00 DR"
        assert lines["Suresh Stores"].total_credit == Decimal("400.00")
        assert lines[square.name].current_balance.is_zero
        assert summary.total_debit_balance == Decimal("600.00")
        assert summary.total_credit_balance == Decimal("0.00")
        assert summary.net_position == Decimal("-600.00")

    @pytest.mark.asyncio
    async def test_transaction_summary(self, service, facade, customer):
        """Test counts, range and an average rounded half-up."""
        await service.create_credit(customer.id, "0.01", date(2024, 5, 1))
        await service.create_debit(customer.id, "0.04", date(2024, 5, 2))
        await service.create_credit(customer.id, "500", date(2024, 7, 1))

        may = await facade.transaction_summary(date(2024, 5, 1), date(2024, 5, 31))
        everything = await facade.transaction_summary()

        assert may.total_transactions == 2
        assert (may.credit_transactions, may.debit_transactions) == (1, 1)
        assert may.average_transaction_size == Decimal("0.03")
        assert may.net == Decimal("-0.03")
        assert everything.total_credit == Decimal("500.01")

    @pytest.mark.asyncio
    async def test_empty_transaction_summary(self, facade):
        summary = await facade.transaction_summary()
        assert summary.total_transactions == 0
        assert summary.average_transaction_size == Decimal("0.00")



if __name__ == "__main__":
    pytest.main([__file__, "-v"])
