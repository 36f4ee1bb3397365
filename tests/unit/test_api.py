"""HTTP-level tests for the upload -> dashboard flow."""

from dataclasses import replace

from fastapi.testclient import TestClient

from conftest import DASHBOARD, EXTRACTION, VERDICT_NO, VERDICT_YES, FakeGateway, as_json
from docdash.app import main
from docdash.app.config import UploadSettings
from docdash.app.errors import InvalidPayload, NetworkUnavailable, NoReadableContent
from docdash.app.main import app, get_config, get_text_extractor
from docdash.app.schemas import PipelineState


def upload(client, name="report.pdf", content=b"%PDF-1.4 fake"):
    return client.post("/api/upload", files={"file": (name, content, "application/octet-stream")})


def use_gateway(client, *responses, **kwargs):
    client.fakes["gateway"] = FakeGateway(responses, **kwargs)
    return client.fakes["gateway"]


def upload_with_data(client):
    use_gateway(client, as_json(VERDICT_YES), as_json(EXTRACTION), as_json(DASHBOARD))
    response = upload(client)
    assert response.status_code == 200
    return response.json()["sessionId"]


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"


def test_api_test_route(api):
    body = api.get("/api/test").json()
    assert body["success"] is True
    assert "POST /api/upload" in body["availableEndpoints"]


def test_app_starts_and_stops_session_sweeper(api):
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200


# ==========================================
#  Upload
# ==========================================


def test_upload_with_data(api):
    gateway = use_gateway(api, as_json(VERDICT_YES), as_json(EXTRACTION), as_json(DASHBOARD))

    response = upload(api)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["hasData"] is True
    assert body["message"] == "Document processed successfully"
    assert body["preview"] == {
        "fileName": "report.pdf",
        "fileType": "pdf",
        "dataRecords": 4,
        "confidence": 85.0,
        "summary": "Quarterly revenue performance",
    }
    assert len(gateway.prompts) == 3

    session = api.sessions.get(body["sessionId"])
    assert session.state == PipelineState.CONFIG_SYNTHESIZED
    assert session.has_data is True


def test_upload_without_data(api):
    use_gateway(api, as_json(VERDICT_NO))

    response = upload(api)

    assert response.status_code == 200
    body = response.json()
    assert body["hasData"] is False
    assert body["reason"] == "Narrative text without figures"
    assert body["preview"] is None
    assert api.sessions.get(body["sessionId"]).state == PipelineState.NO_DATA


def test_upload_rejects_unsupported_extension(api):
    response = upload(api, name="notes.txt")
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid file type. Please upload PDF or image files only."
    assert len(api.sessions) == 0


def test_upload_rejects_oversized_file(api, service_config):
    app.dependency_overrides[get_config] = lambda: replace(service_config, upload=UploadSettings(max_bytes=10))
    response = upload(api, content=b"x" * 11)
    assert response.status_code == 400
    assert "File too large" in response.json()["detail"]


def test_upload_unreadable_document(api):
    def failing_extractor(file_name, content):
        raise NoReadableContent("No readable content found in the document")

    app.dependency_overrides[get_text_extractor] = lambda: failing_extractor
    response = upload(api)
    assert response.status_code == 422
    assert "No readable content" in response.json()["detail"]
    [session] = api.sessions.list()
    assert session.state == PipelineState.FAILED
    assert session.failure.stage == "text_extraction"
    assert api.fakes["gateway"].prompts == []


def test_upload_session_moves_from_uploaded_to_extracting(api, monkeypatch):
    created = []
    states_during_extraction = []
    create = api.sessions.create

    def recording_create(*args, **kwargs):
        session = create(*args, **kwargs)
        created.append(session.state)
        return session

    def watching_extractor(file_name, content):
        states_during_extraction.extend(s.state for s in api.sessions.list())
        raise NoReadableContent("No readable content found in the document")

    monkeypatch.setattr(api.sessions, "create", recording_create)
    app.dependency_overrides[get_text_extractor] = lambda: watching_extractor

    upload(api, name="scan.jpg")

    assert created == [PipelineState.UPLOADED]
    assert states_during_extraction == [PipelineState.EXTRACTING]
    [session] = api.sessions.list()
    assert session.file_type == "jpg"


def test_upload_stage_failure_is_reported_and_recorded(api):
    use_gateway(api, as_json(VERDICT_YES), "I could not find a table, sorry.")

    response = upload(api)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["stage"] == "extraction"
    session = api.sessions.get(detail["sessionId"])
    assert session.state == PipelineState.FAILED
    assert session.failure.stage == "extraction"


def test_upload_insufficient_data(api):
    use_gateway(api, as_json(VERDICT_YES), as_json({"data": [{"quarter": "Q1", "revenue": 1}]}))
    response = upload(api)
    assert response.status_code == 502
    assert response.json()["detail"]["stage"] == "extraction"
    assert "Insufficient data" in response.json()["detail"]["message"]


def test_upload_classification_failure(api):
    use_gateway(api, NetworkUnavailable())
    response = upload(api)
    assert response.status_code == 502
    assert response.json()["detail"]["stage"] == "classification"


def test_upload_without_api_key(api):
    gateway = use_gateway(api, api_key="")
    response = upload(api)
    assert response.status_code == 500
    assert gateway.prompts == []
    [session] = api.sessions.list()
    assert session.state == PipelineState.FAILED
    assert session.failure.stage == "configuration"


def test_upload_unexpected_pipeline_error_is_recorded(api, monkeypatch):
    def broken_analyze(*args, **kwargs):
        raise InvalidPayload("Model output is not JSON", "<html>")

    monkeypatch.setattr(main, "analyze", broken_analyze)

    response = upload(api)

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["stage"] == "pipeline"
    session = api.sessions.get(detail["sessionId"])
    assert session.state == PipelineState.FAILED
    assert session.failure.stage == "pipeline"
    assert "not JSON" in session.failure.reason


# ==========================================
#  Dashboard
# ==========================================


def test_generate_dashboard(api):
    session_id = upload_with_data(api)

    response = api.post("/api/generate-dashboard", json={"sessionId": session_id})

    assert response.status_code == 200
    dashboard = response.json()["dashboard"]
    kpis = {k["name"]: k for k in dashboard["kpis"]}
    assert kpis["Total Revenue"]["value"] == 245000
    assert kpis["Total Revenue"]["formattedValue"] == "$245,000"
    assert kpis["Average Growth"]["formattedValue"] == "7.0%"
    assert kpis["Quarters"]["formattedValue"] == "4"

    by_quarter, by_region = dashboard["charts"]
    assert by_quarter["id"] == "chart_0"
    assert by_quarter["data"][0] == {"quarter": "Q4", "revenue": 70000}
    assert by_quarter["renderConfig"]["type"] == "BarChart"
    assert by_region["data"] == [{"region": "South", "revenue": 135000}, {"region": "North", "revenue": 110000}]
    assert by_region["renderConfig"]["nameKey"] == "region"

    assert dashboard["insights"] == ["Revenue grew every quarter"]
    assert dashboard["summary"] == "Quarterly revenue performance"
    assert dashboard["dataInfo"] == {"totalRecords": 4, "dataSource": "extracted from document", "confidence": 85.0}


def test_generate_dashboard_is_repeatable_without_model_calls(api):
    session_id = upload_with_data(api)
    gateway = api.fakes["gateway"]

    first = api.post("/api/generate-dashboard", json={"sessionId": session_id}).json()
    second = api.post("/api/generate-dashboard", json={"sessionId": session_id}).json()

    assert first == second
    assert len(gateway.prompts) == 3


def test_generate_dashboard_for_session_without_data(api):
    use_gateway(api, as_json(VERDICT_NO))
    session_id = upload(api).json()["sessionId"]

    response = api.post("/api/generate-dashboard", json={"sessionId": session_id})

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "message": "No dashboard data available for this session",
        "reason": "Narrative text without figures",
    }


def test_generate_dashboard_unknown_session(api):
    response = api.post("/api/generate-dashboard", json={"sessionId": "session_0_nope"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Session not found"


# ==========================================
#  Session inspection
# ==========================================


def test_get_session(api):
    session_id = upload_with_data(api)
    body = api.get(f"/api/session/{session_id}").json()
    assert body["success"] is True
    assert body["data"]["sessionId"] == session_id
    assert body["data"]["state"] == "config_synthesized"
    assert len(body["data"]["data"]) == 4
    assert body["data"]["dashboardConfig"]["summary"] == "Quarterly revenue performance"


def test_unknown_session_routes_return_404(api):
    for path in ("/api/session/x", "/api/raw-data/x", "/api/extracted-text/x"):
        assert api.get(path).status_code == 404


def test_list_and_clear_sessions(api):
    upload_with_data(api)
    use_gateway(api, as_json(VERDICT_NO))
    upload(api, name="letter.png")

    listing = api.get("/api/sessions").json()
    assert listing["totalSessions"] == 2
    assert sorted(s["hasData"] for s in listing["sessions"]) == [False, True]
    assert sorted(s["dataRecords"] for s in listing["sessions"]) == [0, 4]

    cleared = api.delete("/api/sessions").json()
    assert cleared["message"] == "Cleared 2 sessions"
    assert api.get("/api/sessions").json()["totalSessions"] == 0


def test_raw_data_previews_long_text(api):
    api.fakes["text"] = "Revenue Q1 $50,000\n" * 50
    session_id = upload_with_data(api)

    raw = api.get(f"/api/raw-data/{session_id}").json()["rawData"]

    assert raw["extractedTextLength"] == len(api.fakes["text"])
    assert raw["dataRecords"] == 4
    assert raw["textPreview"] == api.fakes["text"][:500] + "..."
    assert raw["schema"]["measures"][0]["name"] == "revenue"


def test_extracted_text(api):
    session_id = upload_with_data(api)
    body = api.get(f"/api/extracted-text/{session_id}").json()
    assert body["extractedText"] == api.fakes["text"]
    assert body["textLength"] == len(api.fakes["text"])
    assert body["fileName"] == "report.pdf"
