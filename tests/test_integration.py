import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from conftest import poll_until_status, running_app


def webhook_payload(sys_id: str, status: str = "Extracted") -> dict:
    return {
        "documents": [
            {
                "className": "Invoice",
                "classificationConfidence": 0.876,
                "fields": [
                    {"name": "Invoice Number", "value": "INV-7", "extractionConfidence": 0.9912},
                    {"name": "Total", "value": None, "extractionConfidence": None},
                ],
                "tables": [
                    {
                        "name": "Line Items",
                        "records": [
                            {
                                "records": [
                                    {"recordName": "description", "value": "Widget"},
                                    {"recordName": "amount", "value": "10.00"},
                                ]
                            }
                        ],
                    }
                ],
            }
        ],
        "contentFileReferences": [{"sys_id": sys_id}],
        "extractionStatus": status,
    }


def drain(handle, settle_s: float = 0.2) -> list:
    events = []
    deadline = time.time() + settle_s
    while time.time() < deadline:
        event = handle.get(timeout=0.02)
        if event is not None:
            events.append(event)
    return events


def upload_and_wait_processing(client, payload) -> dict:
    doc_id = client.post("/documents/upload", json=payload).json()["docId"]
    return poll_until_status(client, doc_id, ("processing", "failed"))


def test_mock_mode_end_to_end_over_websocket_and_read_api(mock_client, image_payload):
    with mock_client.websocket_connect("/events") as ws:
        assert ws.receive_json()["event"] == "connected"
        doc_id = mock_client.post("/documents/upload", json=image_payload).json()["docId"]

        events = [ws.receive_json() for _ in range(3)]

    assert [e["event"] for e in events] == ["status-update", "status-update", "completed"]
    assert [e["data"].get("status") for e in events[:2]] == ["uploading", "processing"]
    assert all(e["data"]["docId"] == doc_id for e in events)
    assert all("timestamp" in e["data"] for e in events)

    result = events[2]["data"]["extractedData"]
    assert result["fields"]
    assert 0 <= result["overallConfidence"] <= 100

    # the read API converges with what was pushed
    doc = mock_client.get(f"/documents/{doc_id}").json()
    assert doc["status"] == "completed"
    assert doc["documentType"] == result["documentType"]
    assert isinstance(doc["confidence"], int)
    assert 0 <= doc["confidence"] <= 100
    assert [f["name"] for f in doc["extractedFields"]] == [f["name"] for f in result["fields"]]
    assert doc["errorMessage"] is None


def test_observer_connecting_late_sees_no_backlog(mock_client, image_payload):
    doc_id = mock_client.post("/documents/upload", json=image_payload).json()["docId"]
    poll_until_status(mock_client, doc_id, ("completed",))
    time.sleep(0.2)

    handle = mock_client.app.state.services.broadcaster.subscribe()
    assert drain(handle) == []


def test_failed_webhook_then_redelivery_is_idempotent(prod_client, image_payload):
    doc = upload_and_wait_processing(prod_client, image_payload)
    assert doc["status"] == "processing"
    payload = webhook_payload(doc["externalDocId"], status="Failed")

    r = prod_client.post("/webhook/extraction", json=payload)
    assert r.status_code == 200
    assert r.json() == {"success": True}
    failed = prod_client.get(f"/documents/{doc['id']}").json()
    assert failed["status"] == "failed"
    assert "Failed" in failed["errorMessage"]
    assert failed["extractedFields"] is None
    assert failed["confidence"] is None

    r = prod_client.post("/webhook/extraction", json=payload)
    assert r.status_code == 200
    again = prod_client.get(f"/documents/{doc['id']}").json()
    assert again["completedAt"] == failed["completedAt"]
    assert again["errorMessage"] == failed["errorMessage"]


def test_duplicate_success_webhook_emits_one_completion(prod_client, image_payload):
    doc = upload_and_wait_processing(prod_client, image_payload)
    handle = prod_client.app.state.services.broadcaster.subscribe()
    payload = webhook_payload(doc["externalDocId"])

    assert prod_client.post("/webhook/extraction", json=payload).status_code == 200
    assert prod_client.post("/webhook/extraction", json=payload).status_code == 200

    completed = [e for e in drain(handle) if e["event"] == "completed"]
    assert len(completed) == 1

    stored = prod_client.get(f"/documents/{doc['id']}").json()
    assert stored["status"] == "completed"
    assert stored["documentType"] == "Invoice"
    assert stored["confidence"] == 88
    assert stored["errorMessage"] is None
    assert stored["extractedFields"][0]["confidence"] == pytest.approx(99.12)
    assert stored["extractedFields"][1]["value"] == ""
    assert stored["extractedTables"] == [
        {"name": "Line Items", "rows": [{"description": "Widget", "amount": "10.00"}]}
    ]


def test_review_required_counts_as_success(prod_client, image_payload):
    doc = upload_and_wait_processing(prod_client, image_payload)
    payload = webhook_payload(doc["externalDocId"], status="ReviewRequired")
    assert prod_client.post("/webhook/extraction", json=payload).status_code == 200
    assert prod_client.get(f"/documents/{doc['id']}").json()["status"] == "completed"


def test_webhook_missing_documents_leaves_record_untouched(prod_client, image_payload):
    doc = upload_and_wait_processing(prod_client, image_payload)
    payload = webhook_payload(doc["externalDocId"])
    del payload["documents"]

    r = prod_client.post("/webhook/extraction", json=payload)
    assert r.status_code == 400
    assert prod_client.get(f"/documents/{doc['id']}").json() == doc


def test_webhook_empty_documents_rejected(prod_client, image_payload):
    doc = upload_and_wait_processing(prod_client, image_payload)
    payload = webhook_payload(doc["externalDocId"])
    payload["documents"] = []
    assert prod_client.post("/webhook/extraction", json=payload).status_code == 400


def test_webhook_missing_sys_id_rejected(prod_client):
    payload = webhook_payload("ignored")
    payload["contentFileReferences"] = [{}]
    assert prod_client.post("/webhook/extraction", json=payload).status_code == 400


def test_webhook_unknown_document_404(prod_client):
    r = prod_client.post("/webhook/extraction", json=webhook_payload("EXT-404"))
    assert r.status_code == 404


def test_trigger_failure_leaves_document_processing(
    prod_client, fake_client, trigger_failure, image_payload
):
    fake_client.trigger_error = trigger_failure
    doc = upload_and_wait_processing(prod_client, image_payload)
    assert doc["status"] == "processing"

    time.sleep(0.3)
    still = prod_client.get(f"/documents/{doc['id']}").json()
    assert still["status"] == "processing"
    assert still["errorMessage"] is None
    assert fake_client.triggered == [doc["externalDocId"]]
    assert prod_client.get("/health").json()["queue"]["failedJobs"] == 0


def test_late_webhook_completes_after_trigger_failure(
    prod_client, fake_client, trigger_failure, image_payload
):
    fake_client.trigger_error = trigger_failure
    doc = upload_and_wait_processing(prod_client, image_payload)
    r = prod_client.post("/webhook/extraction", json=webhook_payload(doc["externalDocId"]))
    assert r.status_code == 200
    assert prod_client.get(f"/documents/{doc['id']}").json()["status"] == "completed"


def test_upload_failure_marks_document_failed(
    prod_client, fake_client, upload_failure, image_payload
):
    fake_client.upload_error = upload_failure
    handle = prod_client.app.state.services.broadcaster.subscribe()

    doc_id = prod_client.post("/documents/upload", json=image_payload).json()["docId"]
    doc = poll_until_status(prod_client, doc_id, ("failed",))

    assert doc["status"] == "failed"
    assert doc["errorMessage"] == str(upload_failure)
    assert doc["externalDocId"] is None
    assert doc["processingStartedAt"] is None
    events = drain(handle)
    assert [(e["event"], e["data"].get("status")) for e in events] == [
        ("status-update", "uploading"),
        ("failed", None),
    ]
    assert events[1]["data"]["errorMessage"] == str(upload_failure)


def test_delete_during_mock_delay_drops_late_completion(mock_settings, image_payload):
    slow = mock_settings.model_copy(update={"mock_processing_time_ms": 200})
    with running_app(slow) as client:
        services = client.app.state.services
        doc = upload_and_wait_processing(client, image_payload)
        handle = services.broadcaster.subscribe()

        assert client.delete(f"/documents/{doc['id']}").status_code == 204
        time.sleep(0.4)

        assert [e for e in drain(handle) if e["event"] == "completed"] == []
        assert client.get(f"/documents/{doc['id']}").status_code == 404
        assert services.orchestrator.queue.failed_jobs == 0


def test_concurrent_uploads_all_complete(mock_client, image_payload):
    def upload_once(_):
        r = mock_client.post("/documents/upload", json=image_payload)
        assert r.status_code == 201
        return poll_until_status(mock_client, r.json()["docId"], ("completed", "failed"))

    with ThreadPoolExecutor(max_workers=10) as ex:
        results = [f.result() for f in as_completed(ex.submit(upload_once, i) for i in range(10))]

    assert [d["status"] for d in results].count("completed") == 10
    assert len({d["externalDocId"] for d in results}) == 10
