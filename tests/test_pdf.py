import uuid
from datetime import datetime

from permit_hub.documents.permit_pdf import PermitPdfRenderer, format_local, render_permit_pdf
from permit_hub.models.models import PermitApproval, PermitRequest, User, Worker
from permit_hub.services.json_fields import stringify_array


def _permit(**overrides) -> PermitRequest:
    creator = User(id=uuid.uuid4(), email="r@acme-site.com", password_hash="x", first_name="Ravi", last_name="Kumar")
    fields = dict(
        id=uuid.uuid4(),
        permit_number="PTW-20240101-0001",
        title="Weld pipe rack",
        description="Weld supports on the north rack",
        location="Block A",
        work_type="HOT_WORK",
        start_date=datetime(2024, 1, 1, 9, 0),
        end_date=datetime(2024, 1, 1, 17, 0),
        status="APPROVED",
        priority="HIGH",
        hazards=stringify_array(["Fire", "Fumes"]),
        precautions=stringify_array(["Fire watch"]),
        equipment=stringify_array(["Welding set", "Extinguisher"]),
        measures="[]",
        workers=stringify_array([{"name": "Sam", "trade": "Welder", "badgeNumber": "B-7"}]),
        contractor_name="Acme",
        timezone="Asia/Calcutta",
        created_by=creator.id,
        created_at=datetime(2023, 12, 31, 10, 0),
    )
    fields.update(overrides)
    permit = PermitRequest(**fields)
    permit.creator = creator
    permit.approvals = [
        PermitApproval(
            id=uuid.uuid4(),
            approver_role="SAFETY_OFFICER",
            approver_name="Meera Shah",
            decision="APPROVED",
            approved_at=datetime(2024, 1, 1, 8, 30),
        )
    ]
    permit.registered_workers = [Worker(id=uuid.uuid4(), name="Ravi", trade="Fitter")]
    return permit


def test_render_produces_pdf_bytes():
    content = render_permit_pdf(_permit())
    assert content.startswith(b"%PDF")
    assert content.rstrip().endswith(b"%%EOF")


def test_long_lists_spill_onto_more_pages():
    short = PermitPdfRenderer(_permit())
    short.render()

    hazards = [f"Hazard number {i} with a fairly long description of what can go wrong" for i in range(120)]
    long = PermitPdfRenderer(_permit(hazards=stringify_array(hazards)))
    long.render()
    assert long.page_count > short.page_count


def test_lower_page_break_adds_pages():
    default = PermitPdfRenderer(_permit())
    default.render()
    tight = PermitPdfRenderer(_permit(), page_break_y=400)
    tight.render()
    assert tight.page_count > default.page_count


def test_malformed_list_fields_do_not_break_rendering():
    permit = _permit(hazards="not json", workers='{"oops": true}', status="CLOSED", closure_remarks="Done")
    renderer = PermitPdfRenderer(permit)
    assert renderer.hazards == []
    assert [w["name"] for w in renderer.workers] == ["Ravi"]
    assert renderer.render().startswith(b"%PDF")


def test_empty_measures_fall_back_to_default_checklist():
    renderer = PermitPdfRenderer(_permit())
    assert len(renderer.measures) == 10


def test_format_local():
    assert format_local(datetime(2024, 1, 1, 0, 0), "Asia/Calcutta", "%H:%M") == "05:30"
    assert format_local(datetime(2024, 1, 1, 0, 0), "Nowhere/Else", "%H:%M") == "00:00"
    assert format_local(None, "UTC") == "-"
