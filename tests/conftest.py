"""Pytest fixtures for testing"""

import pytest
from types import SimpleNamespace
from typing import Callable, Generator, List, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from statement_ledger.api.dependencies import get_job_submitter, get_session_factory
from statement_ledger.api.main import create_app
from statement_ledger.config import settings
from statement_ledger.infrastructure.database.models import Base, Card
from statement_ledger.infrastructure.database.session import get_db
from statement_ledger.parsers import max_parser


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def job_submitter() -> AsyncMock:
    submitter = AsyncMock()
    submitter.submit.return_value = None
    return submitter


@pytest.fixture
def client(db: Session, job_submitter: AsyncMock, tmp_path, monkeypatch) -> TestClient:
    """Create FastAPI test client with test database"""
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_job_submitter] = lambda: job_submitter
    return TestClient(app)


@pytest.fixture
def make_card(db: Session) -> Callable[..., Card]:
    """Register a card directly in the test database"""

    def _make_card(last4: str, handler: str, owner: str = "dana", nickname: Optional[str] = None) -> Card:
        card = Card(last4_digits=last4, file_format_handler=handler, owner=owner, nickname=nickname, is_active=True)
        db.add(card)
        db.commit()
        return card

    return _make_card


# Statement workbooks reproducing each issuer's export layout


def max_row(
    business: str,
    charged: float,
    deal_date: str = "05-07-2025",
    card: str = "7229",
    transaction_type: str = "רגילה",
    notes: str = "",
    original: Optional[float] = None,
    charged_currency: str = "₪",
    original_currency: str = "",
    charge_date: str = "10-08-2025",
    category: str = "מזון ומשקאות",
    exchange_rate: Optional[float] = None,
) -> list:
    return [
        deal_date,
        business,
        category,
        card,
        transaction_type,
        charged,
        charged_currency,
        original if original is not None else charged,
        original_currency,
        charge_date,
        notes,
        "",
        "",
        "",
        "",
        exchange_rate,
    ]


def visa_row(
    business: str,
    charged,
    deal_date="05/07/25",
    original=None,
    transaction_type: str = "רגילה",
    category: str = "מזון",
    notes: str = "",
) -> list:
    return [deal_date, business, original if original is not None else charged, charged, transaction_type, category, notes]


def isracard_row(
    business: str,
    charged: float,
    deal_date: str = "05.07.25",
    original: Optional[float] = None,
    original_currency: str = "₪",
    charged_currency: str = "₪",
    details: str = "",
    bank_charge_date: Optional[str] = None,
) -> list:
    return [
        deal_date,
        business,
        original if original is not None else charged,
        original_currency,
        charged,
        charged_currency,
        "1234567",
        details,
        bank_charge_date,
    ]


@pytest.fixture
def statement_rows() -> SimpleNamespace:
    """Row builders for each issuer layout"""
    return SimpleNamespace(max=max_row, visa=visa_row, isracard=isracard_row)


def _save(workbook: Workbook, path) -> str:
    workbook.save(path)
    return str(path)


@pytest.fixture
def max_workbook(tmp_path) -> Callable[..., str]:
    """MAX export: period in A3, header in row 4, three summary rows at the bottom"""

    def build(
        rows: List[list],
        file_name: str = "08.25 - 7229.xlsx",
        period: str = "08/2025",
        sheet_name: str = max_parser.SHEET_REGULAR,
        extra_sheets: Optional[dict] = None,
    ) -> str:
        workbook = Workbook()
        sheets = {sheet_name: rows, **(extra_sheets or {})}
        for position, (name, sheet_rows) in enumerate(sheets.items()):
            worksheet = workbook.active if position == 0 else workbook.create_sheet()
            worksheet.title = name
            worksheet.append(["כל המשתמשים (1)"])
            worksheet.append(["כל הכרטיסים (1)"])
            worksheet.append([period])
            worksheet.append(max_parser.EXPECTED_HEADER)
            for row in sheet_rows:
                worksheet.append(row)
            worksheet.append([max_parser.TOTAL_LABEL, None, None, None, None, sum(r[5] for r in sheet_rows)])
            worksheet.append(["חיובים עתידיים"])
            worksheet.append(["סוף הדוח"])
        return _save(workbook, tmp_path / file_name)

    return build


@pytest.fixture
def visa_cal_workbook(tmp_path) -> Callable[..., str]:
    """VISA/CAL export: banner rows, header at row 4 (row 5 with an immediate-charge line)"""

    def build(
        rows: List[list],
        file_name: str = "VISA-CAL-2446-08-2025.xlsx",
        card_last4: str = "2446",
        charge_date: str = "10/08/2025",
        charge_total: Optional[str] = None,
        immediate_total: Optional[str] = None,
        footer: bool = True,
    ) -> str:
        if charge_total is None:
            total = sum(float(r[3]) for r in rows if len(r) > 3 and isinstance(r[3], (int, float)))
            charge_total = f"{total:,.2f}"

        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "כרטיסי דיסקונט"
        worksheet.append([f"פירוט עסקאות לכרטיס ויזה המסתיים ב-{card_last4} בחשבון דיסקונט לישראל 123-456789"])
        worksheet.append(["ישראל ישראלי"])
        worksheet.append([f"עסקאות לחיוב ב-{charge_date}: {charge_total} ₪"])
        if immediate_total:
            worksheet.append([f"עסקאות בחיוב מיידי {immediate_total} ₪"])
        worksheet.append(["תאריך עסקה", "שם בית עסק", "סכום עסקה", "סכום חיוב", "סוג עסקה", "ענף", "הערות"])
        for row in rows:
            worksheet.append(row)
        if footer:
            worksheet.append([])
            worksheet.append(["את המידע המלא על כל עסקה ניתן למצוא באתר"])
        return _save(workbook, tmp_path / file_name)

    return build


@pytest.fixture
def isracard_workbook(tmp_path) -> Callable[..., str]:
    """Isracard export: single sheet with titled sections, each closed by a total row"""

    def build(
        rows: List[list],
        file_name: str = "8041_07_2025.xlsx",
        card_last4: str = "8041",
        issuer_label: str = "ישראכרט",
        period: str = "יולי 2025",
        charge_date: str = "10.8",
        total: Optional[float] = None,
        foreign_rows: Optional[List[list]] = None,
    ) -> str:
        if total is None:
            total = sum(r[4] for r in rows + (foreign_rows or []))

        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "פירוט עסקאות"
        worksheet.append(["דף פירוט חיובים"])
        worksheet.append(["פירוט עסקאות", None, period])
        worksheet.append([None])
        worksheet.append(["כרטיס"])
        worksheet.append([f"{issuer_label} - {card_last4}", None, None, None, None, None, None, total])
        worksheet.append(["על שם ישראל ישראלי", None, None, None, None, None, None, f"לחיוב ב-{charge_date}"])
        worksheet.append([None])
        header = ["תאריך רכישה", "שם בית עסק", "סכום עסקה", "מטבע עסקה", "סכום חיוב", "מטבע חיוב", "מס' שובר", "פירוט נוסף", "תאריך חיוב"]

        worksheet.append(["עסקאות למועד חיוב"])
        worksheet.append(header)
        for row in rows:
            worksheet.append(row)
        worksheet.append([None, 'סה"כ לחיוב', None, None, sum(r[4] for r in rows)])

        if foreign_rows:
            worksheet.append(["עסקאות בחיוב מחוץ למועד"])
            worksheet.append(header)
            for row in foreign_rows:
                worksheet.append(row)
            worksheet.append([None, 'סה"כ לחיוב', None, None, sum(r[4] for r in foreign_rows)])

        worksheet.append(["תנאים משפטיים: המידע אינו מהווה אסמכתא"])
        return _save(workbook, tmp_path / file_name)

    return build
