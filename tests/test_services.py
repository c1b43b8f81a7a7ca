from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import InUseError, NotFoundError
from models import (
    Bank,
    Bill,
    BillRecurrence,
    Category,
    CategoryType,
    CreditCard,
    Label,
    TransactionType,
    transaction_labels,
)
from schemas import (
    BankIn,
    CategoryIn,
    CreditCardIn,
    LabelIn,
    TransactionIn,
    TransactionQuery,
)
from services import (
    DEFAULT_CATEGORIES,
    BankService,
    CategoryService,
    CreditCardService,
    LabelService,
    TransactionService,
)


def _seed(session: Session):
    food = Category(user_id=1, name="Food", type=CategoryType.expense)
    salary = Category(user_id=1, name="Salary", type=CategoryType.income)
    bank = Bank(user_id=1, name="HDFC")
    foreign_bank = Bank(user_id=2, name="Other")
    session.add_all([food, salary, bank, foreign_bank])
    session.commit()
    return food, salary, bank, foreign_bank


def _txn_in(bank, category, **overrides) -> TransactionIn:
    values = dict(
        bank_id=bank.id,
        category_id=category.id,
        type=TransactionType.expense,
        amount_cents=2500,
        transaction_date=date(2025, 3, 5),
    )
    values.update(overrides)
    return TransactionIn(**values)


def test_seed_defaults_runs_once():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        service = CategoryService(session, 1)
        assert service.seed_defaults() == len(DEFAULT_CATEGORIES)
        assert service.seed_defaults() == 0
        income = service.list_all(CategoryType.income)
        assert {c.name for c in income} == {
            "Salary",
            "Freelance",
            "Investments",
            "Other Income",
        }
        assert CategoryService(session, 2).list_all() == []


def test_category_duplicate_names_are_case_insensitive():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _seed(session)
        service = CategoryService(session, 1)
        with pytest.raises(ValueError):
            service.create(CategoryIn(name=" food ", type=CategoryType.expense))
        created = service.create(CategoryIn(name="Food", type=CategoryType.income))
        assert created.type == CategoryType.income


def test_category_in_use_cannot_be_deleted():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, salary, bank, _ = _seed(session)
        TransactionService(session, 1).create(_txn_in(bank, food))
        service = CategoryService(session, 1)

        with pytest.raises(InUseError):
            service.delete(food.id)
        service.delete(salary.id)
        with pytest.raises(NotFoundError):
            service.get(salary.id)


def test_system_category_is_read_only():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        system = Category(
            user_id=1, name="Transfers", type=CategoryType.expense, is_system=True
        )
        session.add(system)
        session.commit()
        service = CategoryService(session, 1)
        with pytest.raises(ValueError):
            service.update(system.id, CategoryIn(name="Moves"))
        with pytest.raises(ValueError):
            service.delete(system.id)


def test_bank_delete_cleans_up_card_and_bills():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _, bank, _ = _seed(session)
        bank_id = bank.id
        CreditCardService(session, 1).create(
            CreditCardIn(
                bank_id=bank_id,
                card_name="Regalia",
                billing_cycle_start_day=25,
                billing_cycle_end_day=24,
                payment_due_day=5,
            )
        )
        bill = Bill(
            user_id=1,
            category_id=food.id,
            bank_id=bank_id,
            name="Rent",
            amount_cents=100000,
            recurrence=BillRecurrence.monthly,
            start_date=date(2025, 1, 1),
        )
        session.add(bill)
        session.commit()

        BankService(session, 1).delete(bank_id)

        assert session.get(Bank, bank_id) is None
        assert session.scalar(select(func.count(CreditCard.id))) == 0
        assert session.get(Bill, bill.id).bank_id is None


def test_bank_with_transactions_cannot_be_deleted():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _, bank, foreign_bank = _seed(session)
        TransactionService(session, 1).create(_txn_in(bank, food))
        service = BankService(session, 1)
        with pytest.raises(InUseError):
            service.delete(bank.id)
        with pytest.raises(NotFoundError):
            service.delete(foreign_bank.id)


def test_bank_update_replaces_fields():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        bank = BankService(session, 1).create(BankIn(name="ICICI"))
        updated = BankService(session, 1).update(
            bank.id, BankIn(name="ICICI Salary", account_number_last4="1234")
        )
        assert updated.name == "ICICI Salary"
        assert updated.account_number_last4 == "1234"


def test_credit_card_one_per_bank_and_billing_summary():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _, _, bank, foreign_bank = _seed(session)
        service = CreditCardService(session, 1)
        data = CreditCardIn(
            bank_id=bank.id,
            card_name="Regalia",
            billing_cycle_start_day=25,
            billing_cycle_end_day=24,
            payment_due_day=5,
        )
        card = service.create(data)
        with pytest.raises(ValueError):
            service.create(data)
        with pytest.raises(NotFoundError):
            service.create(data.model_copy(update={"bank_id": foreign_bank.id}))
        with pytest.raises(NotFoundError):
            CreditCardService(session, 2).get(card.id)

        summary = service.billing_summary(card.id, upcoming=2, today=date(2025, 3, 10))
        assert summary["current_cycle"] == {
            "cycle_start": "2025-02-25",
            "cycle_end": "2025-03-24",
            "due_date": "2025-04-05",
        }
        assert summary["label"] == "Feb 25 - Mar 24"
        assert summary["days_until_due"] == 26
        assert len(summary["upcoming_cycles"]) == 2


def test_cycle_transactions_filters_by_card_bank_and_range():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, salary, bank, _ = _seed(session)
        other_bank = Bank(user_id=1, name="SBI")
        session.add(other_bank)
        session.commit()
        card = CreditCardService(session, 1).create(
            CreditCardIn(
                bank_id=bank.id,
                card_name="Regalia",
                last_four_digits="4242",
                billing_cycle_start_day=25,
                billing_cycle_end_day=24,
                payment_due_day=5,
            )
        )
        transactions = TransactionService(session, 1)
        transactions.create(_txn_in(bank, food, transaction_date=date(2025, 2, 25)))
        transactions.create(_txn_in(bank, food, transaction_date=date(2025, 3, 24)))
        transactions.create(_txn_in(bank, food, transaction_date=date(2025, 3, 25)))
        transactions.create(_txn_in(other_bank, food, transaction_date=date(2025, 3, 1)))
        transactions.create(
            _txn_in(
                bank, salary, type=TransactionType.income, transaction_date=date(2025, 3, 1)
            )
        )

        result = CreditCardService(session, 1).cycle_transactions(
            card.id, date(2025, 2, 25), date(2025, 3, 24)
        )

        assert [t["transaction_date"] for t in result["transactions"]] == [
            "2025-03-24",
            "2025-02-25",
        ]
        assert result["total_cents"] == 5000
        assert result["credit_card"]["bank_name"] == "HDFC"
        with pytest.raises(ValueError):
            CreditCardService(session, 1).cycle_transactions(
                card.id, date(2025, 3, 24), date(2025, 2, 25)
            )


def test_transaction_create_validates_references():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, salary, bank, foreign_bank = _seed(session)
        service = TransactionService(session, 1)
        with pytest.raises(ValueError):
            service.create(_txn_in(bank, salary))
        with pytest.raises(NotFoundError):
            service.create(_txn_in(foreign_bank, food))
        transfer = service.create(_txn_in(bank, food, type=TransactionType.transfer))
        assert transfer.type == TransactionType.transfer


def test_transaction_labels_are_deduplicated():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _, bank, _ = _seed(session)
        txn = TransactionService(session, 1).create(
            _txn_in(bank, food, labels=["Trip", "trip", " Work "])
        )
        assert sorted(label.name for label in txn.labels) == ["Trip", "Work"]
        assert session.scalar(select(func.count(Label.id))) == 2


def test_transaction_list_filters():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, salary, bank, _ = _seed(session)
        service = TransactionService(session, 1)
        lunch = service.create(
            _txn_in(bank, food, description="Team lunch", labels=["work"])
        )
        service.create(
            _txn_in(bank, food, description="Groceries", transaction_date=date(2025, 2, 1))
        )
        service.create(
            _txn_in(bank, salary, type=TransactionType.income, description="Payroll")
        )
        label_id = lunch.labels[0].id

        assert len(service.list(TransactionQuery())) == 3
        assert [t.id for t in service.list(TransactionQuery(label_id=label_id))] == [
            lunch.id
        ]
        assert [t.description for t in service.list(TransactionQuery(query="LUNCH"))] == [
            "Team lunch"
        ]
        in_march = service.list(TransactionQuery(start_date=date(2025, 3, 1)))
        assert len(in_march) == 2
        expenses = service.list(TransactionQuery(type=TransactionType.expense))
        assert {t.description for t in expenses} == {"Team lunch", "Groceries"}
        assert TransactionService(session, 2).list(TransactionQuery()) == []


def test_transaction_update_and_delete():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _, bank, _ = _seed(session)
        service = TransactionService(session, 1)
        txn = service.create(_txn_in(bank, food, labels=["a"]))
        updated = service.update(
            txn.id, _txn_in(bank, food, amount_cents=9900, labels=["b"])
        )
        assert updated.amount_cents == 9900
        assert [label.name for label in updated.labels] == ["b"]

        service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id)
        assert session.scalar(select(func.count()).select_from(transaction_labels)) == 0


def test_label_delete_clears_associations():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _, bank, _ = _seed(session)
        txn = TransactionService(session, 1).create(
            _txn_in(bank, food, labels=["Trip", "Work"])
        )
        labels = LabelService(session, 1)
        trip = next(label for label in labels.list_all() if label.name == "Trip")

        labels.delete(trip.id)

        reloaded = TransactionService(session, 1).get(txn.id)
        assert [label.name for label in reloaded.labels] == ["Work"]
        assert [label.name for label in labels.list_all()] == ["Work"]


def test_label_names_unique_per_user():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        labels = LabelService(session, 1)
        work = labels.create(LabelIn(name="Work"))
        home = labels.create(LabelIn(name="Home"))
        with pytest.raises(ValueError):
            labels.create(LabelIn(name="work"))
        with pytest.raises(ValueError):
            labels.update(home.id, LabelIn(name="WORK"))
        assert labels.update(work.id, LabelIn(name="Work", color="#fff")).color == "#fff"
        assert LabelService(session, 2).create(LabelIn(name="Work")).name == "Work"
        with pytest.raises(ValueError):
            labels.create(LabelIn(name="   "))
