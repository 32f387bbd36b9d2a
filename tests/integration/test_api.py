"""Integration tests for API endpoints"""

import json
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from statement_ledger.infrastructure.database.models import Transaction, UploadedFile

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def upload_payload(*paths_and_names):
    """Multipart file tuples for the given (path, upload name) pairs"""
    files = []
    for path, name in paths_and_names:
        with open(path, "rb") as f:
            files.append(("files", (name, f.read(), XLSX)))
    return files


@pytest.fixture
def max_statement(max_workbook, statement_rows) -> str:
    return max_workbook([statement_rows.max("שופרסל", 250.5), statement_rows.max("סונול", 180.0)])


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "batch_duration_seconds" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_upload_processes_batch(client: TestClient, db: Session, make_card, max_statement, job_submitter):
    """Test POST /v1/uploads stores the file and background processing completes the batch"""
    make_card("7229", "max")

    response = client.post(
        "/v1/uploads",
        files=upload_payload((max_statement, "08.25 - 7229.xlsx")),
        data={"owner": "dana"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "pending"
    assert data["file_count"] == 1

    # Background task ran in its own session
    db.expire_all()
    batch = client.get(f"/v1/batches/{data['batch_id']}").json()
    assert batch["status"] == "completed"
    assert batch["new_transactions"] == 2
    assert batch["total_amount_ils"] == 430.5
    assert batch["files"][0]["status"] == "completed"
    assert batch["files"][0]["filename"] == "08.25 - 7229.xlsx"
    job_submitter.submit.assert_awaited_once()


def test_upload_blocked_for_new_card(client: TestClient, db: Session, max_statement):
    """Test an unregistered card blocks the batch until the user confirms it"""
    response = client.post(
        "/v1/uploads",
        files=upload_payload((max_statement, "08.25 - 7229.xlsx")),
        data={"owner": "dana"},
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "Card validation required"
    assert detail["files_needing_approval"][0]["status"] == "NEW_CARD"
    assert detail["files_needing_approval"][0]["card"] == {"last4": "7229", "issuer": "MAX"}

    db.expire_all()
    batch = client.get(f"/v1/batches/{detail['batch_id']}").json()
    assert batch["status"] == "failed"
    assert batch["error_message"] == "1 file(s) require manual card validation"
    assert batch["files"][0]["error_message"].startswith("Validation required:")
    assert db.query(Transaction).count() == 0


def test_upload_with_card_mapping(client: TestClient, db: Session, make_card, visa_cal_workbook, statement_rows):
    """Test a file with no filename hint is assigned through an explicit card mapping"""
    card = make_card("2446", "visa-cal")
    path = visa_cal_workbook([statement_rows.visa("רמי לוי", 99.9)])

    response = client.post(
        "/v1/uploads",
        files=upload_payload((path, "statement.xlsx")),
        data={"owner": "dana", "card_mappings": json.dumps([{"filename": "statement.xlsx", "card_id": card.id}])},
    )

    assert response.status_code == 200
    db.expire_all()
    uploaded = db.query(UploadedFile).one()
    assert uploaded.card_id == card.id
    assert uploaded.status == "completed"


def test_upload_override_without_card(client: TestClient, max_statement):
    """Test overriding validation still needs a card to assign"""
    response = client.post(
        "/v1/uploads",
        files=upload_payload((max_statement, "08.25 - 7229.xlsx")),
        data={"owner": "dana", "override_validation": "true"},
    )

    assert response.status_code == 400
    assert "No card assigned" in response.json()["detail"]


def test_upload_mapping_to_unknown_card(client: TestClient, max_statement):
    response = client.post(
        "/v1/uploads",
        files=upload_payload((max_statement, "08.25 - 7229.xlsx")),
        data={"owner": "dana", "card_mappings": json.dumps([{"filename": "08.25 - 7229.xlsx", "card_id": 999}])},
    )

    assert response.status_code == 404


@pytest.mark.parametrize(
    "card_mappings",
    [
        "not json",
        json.dumps([{"filename": "08.25 - 7229.xlsx", "card_id": -1}]),
        json.dumps([{"filename": "other.xlsx", "card_id": 1}]),
    ],
)
def test_upload_invalid_card_mappings(client: TestClient, max_statement, card_mappings):
    response = client.post(
        "/v1/uploads",
        files=upload_payload((max_statement, "08.25 - 7229.xlsx")),
        data={"owner": "dana", "card_mappings": card_mappings},
    )

    assert response.status_code == 400


def test_upload_rejects_bad_extension(client: TestClient):
    response = client.post(
        "/v1/uploads",
        files=[("files", ("statement.pdf", b"%PDF-1.4", "application/pdf"))],
        data={"owner": "dana"},
    )

    assert response.status_code == 400
    assert "invalid extension" in response.json()["detail"]


def test_upload_rejects_empty_file(client: TestClient):
    response = client.post(
        "/v1/uploads",
        files=[("files", ("statement.xlsx", b"", XLSX))],
        data={"owner": "dana"},
    )

    assert response.status_code == 400
    assert "is empty" in response.json()["detail"]


@pytest.mark.parametrize("names", [("08.25 - 7229.xlsx", "08.25 - 7229.xlsx"), ("statement.xlsx", ".statement.xlsx")])
def test_upload_rejects_duplicate_file_names(client: TestClient, db: Session, max_statement, names):
    """Test two files stored under the same name in one batch are rejected"""
    response = client.post(
        "/v1/uploads",
        files=upload_payload(*[(max_statement, name) for name in names]),
        data={"owner": "dana"},
    )

    assert response.status_code == 400
    assert "Duplicate file names" in response.json()["detail"]
    assert db.query(UploadedFile).count() == 0


def test_create_and_list_cards(client: TestClient, db: Session):
    """Test POST /v1/cards registers a card and rejects a repeat"""
    body = {"owner": "dana", "last4": "8041", "issuer": "ISRACARD", "nickname": "Family"}

    response = client.post("/v1/cards", json=body)
    assert response.status_code == 201
    data = response.json()
    assert data["last4_digits"] == "8041"
    assert data["file_format_handler"] == "isracard"
    assert data["bank_or_company"] == "Isracard / AMEX"

    assert client.post("/v1/cards", json=body).status_code == 409

    listed = client.get("/v1/cards", params={"owner": "dana"}).json()
    assert [card["id"] for card in listed] == [data["id"]]
    assert client.get("/v1/cards", params={"owner": "noa"}).json() == []


def test_create_card_validates_digits(client: TestClient):
    response = client.post("/v1/cards", json={"owner": "dana", "last4": "12a4", "issuer": "MAX"})
    assert response.status_code == 422


def test_detect_card_endpoint(client: TestClient, isracard_workbook, statement_rows):
    """Test POST /v1/cards/detect reports a header-detected card without storing anything"""
    path = isracard_workbook([statement_rows.isracard("שופרסל", 120.0)])

    with open(path, "rb") as f:
        response = client.post(
            "/v1/cards/detect",
            files={"file": ("statement.xlsx", f.read(), XLSX)},
            data={"owner": "dana"},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "NEW_CARD"
    assert data["tier"] == "TIER_3_HEADER"
    assert data["card"] == {"last4": "8041", "issuer": "ISRACARD"}
    assert data["needs_user_confirmation"] is True


def test_get_installment_group(client: TestClient, db: Session, make_card, visa_cal_workbook, statement_rows):
    """Test GET /v1/installments/{group_id} lists every payment of an uploaded plan"""
    make_card("2446", "visa-cal")
    path = visa_cal_workbook(
        [statement_rows.visa("איקאה", 132.0, original=3099.0, transaction_type="תשלומים", notes="תשלום 1 מתוך 24")]
    )
    response = client.post(
        "/v1/uploads",
        files=upload_payload((path, "VISA-CAL-2446-08-2025.xlsx")),
        data={"owner": "dana"},
    )
    assert response.status_code == 200

    db.expire_all()
    group_id = db.query(Transaction).first().installment_group_id
    data = client.get(f"/v1/installments/{group_id}").json()

    assert data["original_amount"] == 3099.0
    assert [p["installment_index"] for p in data["payments"]] == list(range(1, 25))
    assert data["payments"][0]["status"] == "completed"
    assert all(p["status"] == "projected" for p in data["payments"][1:])


def test_unknown_installment_group(client: TestClient):
    assert client.get("/v1/installments/" + "0" * 64).status_code == 404


def test_unknown_batch(client: TestClient):
    response = client.get("/v1/batches/999")
    assert response.status_code == 404
