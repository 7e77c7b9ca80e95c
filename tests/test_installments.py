"""Tests for installment plan reconstruction."""
import unittest
from datetime import date
from decimal import Decimal

from statementflow.ingest.installments import (
    InstallmentBlock,
    InstallmentReconstructor,
    annotate_transactions,
    merge_plan,
)
from statementflow.ingest.models import InstallmentPlan, Transaction


INSTALLMENT_TEXT = """Pagamento a prestações
Prestações Ref.ª: 00122905
Transação: WORTEN ALMADA
Data: 15/01/2024
N.º Prestação 3/6
Valor: 85,00"""


def block(number, amount="85.00", total=6, **kwargs):
    return InstallmentBlock(
        reference_id="00122905",
        number=number,
        total=total,
        merchant_name="WORTEN ALMADA",
        amount=Decimal(amount),
        transaction_date=date(2024, 1, 15),
        **kwargs
    )


class TestInstallmentReconstructor(unittest.TestCase):
    """Test InstallmentReconstructor functionality."""

    def setUp(self):
        self.reconstructor = InstallmentReconstructor()

    def test_scan_block(self):
        result = self.reconstructor.scan(INSTALLMENT_TEXT)

        self.assertEqual(result.dropped, 0)
        self.assertEqual(len(result.blocks), 1)
        parsed = result.blocks[0]
        self.assertEqual(parsed.reference_id, "00122905")
        self.assertEqual((parsed.number, parsed.total), (3, 6))
        self.assertEqual(parsed.merchant_name, "WORTEN ALMADA")
        self.assertEqual(parsed.amount, Decimal("85.00"))
        self.assertEqual(parsed.transaction_date, date(2024, 1, 15))

    def test_reconstruct_derives_original_amount(self):
        plans, dropped = self.reconstructor.reconstruct(INSTALLMENT_TEXT)

        self.assertEqual(dropped, 0)
        plan = plans["00122905"]
        self.assertEqual(plan.original_amount, Decimal("510.00"))
        self.assertEqual(plan.remaining_balance, Decimal("425.00"))
        self.assertEqual(plan.latest_number, 3)

    def test_block_without_reference_dropped(self):
        text = "Pagamento a prestações\nTransação: FNAC\nN.º Prestação 2/6\nValor: 10,00"
        result = self.reconstructor.scan(text)

        self.assertEqual(result.blocks, [])
        self.assertEqual(result.dropped, 1)

    def test_missing_counter_honours_setting(self):
        """Without N/M the block is dropped unless the total count is optional."""
        text = (
            "PREST.3 - PAG. A PREST. REF.00122905 85,00\n"
            "Pagamento a prestações\n"
            "Prestações Ref.ª: 00122905\n"
            "Transação: WORTEN ALMADA\n"
            "Valor: 85,00"
        )
        strict = InstallmentReconstructor(require_total_count=True).scan(text)
        self.assertEqual(strict.dropped, 1)
        self.assertEqual(strict.blocks, [])

        lenient = InstallmentReconstructor(require_total_count=False).scan(text)
        self.assertEqual(lenient.dropped, 0)
        self.assertEqual(lenient.blocks[0].number, 3)
        self.assertIsNone(lenient.blocks[0].total)

    def test_same_reference_across_card_sections(self):
        text = (
            "Cartão n.º 0342******9766\n"
            + INSTALLMENT_TEXT
            + "\nCartão n.º 0342******8752\n"
            + INSTALLMENT_TEXT.replace("3/6", "4/6")
        )
        plans, dropped = self.reconstructor.reconstruct(text)

        self.assertEqual(dropped, 0)
        self.assertEqual(list(plans), ["00122905"])
        self.assertEqual([s.number for s in plans["00122905"].installments_seen], [3, 4])

    def test_interest_rate(self):
        result = self.reconstructor.scan(INSTALLMENT_TEXT + "\nTAN: 12,5%")
        self.assertEqual(result.blocks[0].interest_rate, Decimal("12.5"))


class TestMergePlan(unittest.TestCase):
    """Test merge_plan behaviour across statements."""

    def test_merge_is_idempotent(self):
        first = merge_plan(None, [block(3)])
        again = merge_plan(first, [block(3)])

        self.assertEqual(again.to_dict(), first.to_dict())
        self.assertEqual(len(again.installments_seen), 1)

    def test_sightings_accumulate_in_order(self):
        plan = merge_plan(None, [block(4)])
        plan = merge_plan(plan, [block(3)])

        self.assertEqual([s.number for s in plan.installments_seen], [3, 4])
        self.assertEqual(plan.paid_amount, Decimal("170.00"))
        self.assertEqual(plan.remaining_balance, Decimal("340.00"))

    def test_newer_sighting_wins(self):
        plan = merge_plan(None, [block(3, amount="80.00")])
        plan = merge_plan(plan, [block(3, amount="85.00")])

        self.assertEqual(plan.installments_seen[0].amount, Decimal("85.00"))

    def test_sighting_without_amount_keeps_earlier_values(self):
        plan = merge_plan(None, [block(3)])
        rescan = InstallmentBlock(reference_id="00122905", number=3, total=6, amount=None, transaction_date=None)
        plan = merge_plan(plan, [rescan])

        sighting = plan.installments_seen[0]
        self.assertEqual(sighting.amount, Decimal("85.00"))
        self.assertEqual(sighting.transaction_date, date(2024, 1, 15))
        self.assertEqual(plan.per_installment_amount, Decimal("85.00"))

    def test_stated_original_amount_kept(self):
        plan = merge_plan(None, [block(1, original_amount=Decimal("509.99"))])

        self.assertEqual(plan.original_amount, Decimal("509.99"))
        self.assertTrue(plan.is_consistent())

    def test_existing_plan_not_mutated(self):
        first = merge_plan(None, [block(3)])
        merge_plan(first, [block(4)])

        self.assertEqual(len(first.installments_seen), 1)

    def test_foreign_reference_rejected(self):
        other = InstallmentBlock(reference_id="99999999", number=1, total=2)
        with self.assertRaises(ValueError):
            merge_plan(None, [block(1), other])

    def test_round_trip_through_dict(self):
        plan = merge_plan(None, [block(3), block(4)])
        restored = InstallmentPlan.from_dict(plan.to_dict())

        self.assertEqual(restored, plan)


class TestAnnotateTransactions(unittest.TestCase):

    def test_merchant_and_amount_match(self):
        plans = {"00122905": merge_plan(None, [block(3)])}
        transactions = [
            Transaction(date(2024, 1, 12), "WORTEN ALMADA", Decimal("85.00")),
            Transaction(date(2024, 1, 13), "WORTEN ALMADA", Decimal("19.99")),
            Transaction(date(2024, 1, 14), "PREST.3 REF.00122905", Decimal("85.00")),
        ]
        annotated = annotate_transactions(transactions, plans)

        self.assertEqual(annotated[0].installment_info.number, 3)
        self.assertEqual(annotated[0].installment_info.total, 6)
        self.assertIsNone(annotated[1].installment_info)
        self.assertEqual(annotated[2].installment_info.number, 3)


if __name__ == "__main__":
    unittest.main()
