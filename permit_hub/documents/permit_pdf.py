"""
Printable work permit (A4) drawn on a reportlab canvas.

Layout runs top-down with a cursor measured from the top edge; a new page
starts whenever the next block would push the cursor past page_break_y.
"""
from datetime import datetime
from io import BytesIO
from typing import Iterable, List, Optional

import pytz
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from ..config import settings
from ..models.models import PermitRequest, utcnow
from ..services.json_fields import parse_json_array
from ..services.permits import DEFAULT_MEASURES, DEFAULT_TIMEZONE
from .qr import generate_qr_code_image, worker_registration_url

PAGE_W, PAGE_H = A4
LEFT = 40
RIGHT = 555
CONTENT_W = RIGHT - LEFT
TOP = 40

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"

WORK_TYPE_TITLES = {
    "HOT_WORK": "HOT WORK PERMIT",
    "CONFINED_SPACE": "CONFINED SPACE PERMIT",
    "ELECTRICAL": "ELECTRICAL WORK PERMIT",
    "WORKING_AT_HEIGHT": "WORKING AT HEIGHT PERMIT",
    "EXCAVATION": "EXCAVATION PERMIT",
    "LIFTING": "LIFTING OPERATIONS PERMIT",
    "CHEMICAL": "CHEMICAL HANDLING PERMIT",
    "RADIATION": "RADIATION WORK PERMIT",
    "GENERAL": "GENERAL WORK PERMIT",
    "COLD_WORK": "COLD WORK PERMIT",
    "LOTO": "LOTO PERMIT",
    "VEHICLE": "VEHICLE WORK PERMIT",
    "PRESSURE_TESTING": "HYDRO PRESSURE TESTING PERMIT",
    "ENERGIZE": "ENERGIZE PERMIT",
    "SWMS": "SAFE WORK METHOD STATEMENT",
}

STATUS_COLORS = {
    "PENDING": "#f59e0b",
    "APPROVED": "#10b981",
    "REJECTED": "#ef4444",
    "CLOSED": "#6b7280",
    "EXTENDED": "#3b82f6",
}

SECTION_COLORS = {
    "vendor": "#f59e0b",
    "workers": "#334155",
    "location": "#7c3aed",
    "duration": "#334155",
    "hazards": "#dc2626",
    "precautions": "#ea580c",
    "ppe": "#16a34a",
    "measures": "#334155",
    "instructions": "#2563eb",
    "declaration": "#1e3a8a",
    "closure": "#6b7280",
    "approvals": "#334155",
}

ANSWER_COLORS = {"YES": "#10b981", "NO": "#ef4444", "N/A": "#6b7280"}

TEXT = colors.HexColor("#1e293b")
MUTED = colors.HexColor("#64748b")
BORDER = colors.HexColor("#e2e8f0")

GENERAL_INSTRUCTIONS = [
    "1. Only upon prior request from the client can 3-phase 440 volts electrical power be provided at one point "
    "with MCB protection. All further distribution of power for the work is in the vendor's/contractor's scope and "
    "responsibility. Wires and cables of proper type and size with safety devices like MCCB/ELCB are to be used to "
    "avoid electrocution and related hazards.",
    "2. All instructions related to the mandatory use of safety equipment and information about potentially "
    "hazardous areas are given to the responsible person(s) by the Safety Officer.",
    "3. Following all safety protocols as guided by the Fire & Safety Team is mandatory. If found not adhering, the "
    "Fire & Safety Team has the authority to stop the ongoing work.",
    "4. General working hours are: 9:30 AM - 6:30 PM",
    "5. Special permission is mandatory for night work.",
    "6. Take additional precautions while opening shaft doors as all shafts are hollow. Close and lock shaft doors "
    "after completing the work.",
    "7. Report any issue or emergency to the 24x7 Fire & Safety Duty Cell.",
    "8. Take care not to disturb other clients' or tenants' existing setup while working.",
]

DECLARATION_POINTS = [
    "1. I/We (the vendor/contractor/applicant) have read and understood all the safety requirements, protocols and "
    "procedures mentioned in this permit and accept complete responsibility for compliance.",
    "2. I/We agree to comply with all the listed requirements, safety measures and emergency procedures throughout "
    "the duration of this work permit.",
    "3. I/We shall be held solely responsible for any incident, injury or damage to property arising from any unsafe "
    "act, negligence or violation of safety protocols during this work.",
    "4. I/We acknowledge that verifying the validity of workers' licenses, certifications, medical fitness and "
    "vehicle compliance documents is our responsibility.",
    "5. I/We confirm that all workers deployed are adequately trained, medically fit and equipped with the PPE "
    "specified in this permit.",
    "6. I/We agree to immediately report any unsafe condition, near miss or emergency to the site safety team.",
    "7. I/We indemnify and hold harmless the company, its officers and employees against all claims arising out of "
    "this work permit.",
]

DECLARATION_FOOTER = (
    "By agreeing below, the applicant confirms that this declaration has been read, understood and agreed upon, "
    "and accepts full liability for all activities under this permit."
)


def format_local(dt: Optional[datetime], tz_name: Optional[str], fmt: str = "%d %b %Y, %I:%M %p") -> str:
    """Render a naive-UTC timestamp in the permit's timezone."""
    if not dt:
        return "-"
    try:
        tz = pytz.timezone(tz_name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(tz).strftime(fmt)


class PermitPdfRenderer:
    def __init__(
        self,
        permit: PermitRequest,
        company_name: Optional[str] = None,
        page_break_y: Optional[int] = None,
        generated_at: Optional[datetime] = None,
    ):
        self.permit = permit
        self.company_name = company_name or permit.company_name or settings.company_name
        self.page_break_y = page_break_y or settings.pdf_page_break_y
        self.generated_at = generated_at or utcnow()
        self.tz = permit.timezone or DEFAULT_TIMEZONE

        self.hazards = parse_json_array(permit.hazards)
        self.precautions = parse_json_array(permit.precautions)
        self.equipment = parse_json_array(permit.equipment)
        self.measures = parse_json_array(permit.measures) or DEFAULT_MEASURES
        self.workers = self._all_workers()

        self.buffer = BytesIO()
        self.c = canvas.Canvas(self.buffer, pagesize=A4)
        self.c.setTitle(permit.permit_number or "Work Permit")
        self.y = TOP
        self.page_count = 1

    def _all_workers(self) -> List[dict]:
        rows = []
        for w in parse_json_array(self.permit.workers):
            if isinstance(w, dict):
                rows.append(w)
        for w in self.permit.registered_workers:
            rows.append({
                "name": w.name,
                "phone": w.phone,
                "company": w.company,
                "trade": w.trade,
                "badgeNumber": w.badge_number,
            })
        return rows

    # drawing primitives

    def _base(self, y: float) -> float:
        return PAGE_H - y

    def new_page(self) -> None:
        self.c.showPage()
        self.page_count += 1
        self.y = TOP

    def ensure(self, space: float) -> None:
        if self.y + space > self.page_break_y:
            self.new_page()

    def text(self, x, y, value, font=FONT, size=9, color=TEXT) -> None:
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, self._base(y + size), str(value))

    def centered(self, x, width, y, value, font=FONT_BOLD, size=9, color=colors.white) -> None:
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawCentredString(x + width / 2.0, self._base(y + size), str(value))

    def fill_rect(self, x, y, w, h, color, radius: float = 0) -> None:
        self.c.setFillColor(colors.HexColor(color))
        if radius:
            self.c.roundRect(x, self._base(y + h), w, h, radius, stroke=0, fill=1)
        else:
            self.c.rect(x, self._base(y + h), w, h, stroke=0, fill=1)

    def stroke_rect(self, x, y, w, h) -> None:
        self.c.setStrokeColor(BORDER)
        self.c.rect(x, self._base(y + h), w, h, stroke=1, fill=0)

    def paragraph(self, x, width, value, font=FONT, size=8, color=TEXT, leading=None, gap=6) -> None:
        leading = leading or size + 3
        for line in simpleSplit(str(value), font, size, width):
            self.ensure(leading)
            self.text(x, self.y, line, font, size, color)
            self.y += leading
        self.y += gap

    def section_header(self, title: str, color: str) -> None:
        self.ensure(60)
        self.fill_rect(LEFT, self.y, CONTENT_W, 22, color)
        self.centered(LEFT, CONTENT_W, self.y + 6, title, size=10)
        self.y += 30

    def info_box(self, x, y, w, h, title, color) -> None:
        self.stroke_rect(x, y, w, h)
        self.fill_rect(x, y, w, 20, color)
        self.centered(x, w, y + 5, title)

    # sections

    def header(self) -> None:
        p = self.permit
        creator = p.creator
        requester = creator.full_name if creator else "-"

        self.text(LEFT, self.y, self.company_name, FONT_BOLD, 16)
        self.y += 24
        self.text(LEFT, self.y, WORK_TYPE_TITLES.get(p.work_type, "WORK PERMIT"), FONT_BOLD, 13, colors.HexColor("#334155"))
        self.y += 20
        self.text(LEFT, self.y, f"Requested by: {requester} on {format_local(p.created_at, self.tz, '%d %b %Y')}", FONT_BOLD, 9)
        self.y += 16
        self.text(LEFT, self.y, f"Permit No: {p.permit_number}", FONT_BOLD, 9)
        self.y += 14
        self.text(LEFT, self.y, p.title or "", FONT, 9, MUTED)

        # QR for the public worker registration page, status badge beneath it
        qr = ImageReader(generate_qr_code_image(worker_registration_url(p.id), size=150))
        self.c.drawImage(qr, RIGHT - 70, self._base(TOP + 70), width=70, height=70)
        status = (p.status or "").replace("_", " ")
        width = 90 if len(status) > 10 else 70
        self.fill_rect(RIGHT - width, TOP + 76, width, 20, STATUS_COLORS.get(p.status, "#6b7280"), radius=3)
        self.centered(RIGHT - width, width, TOP + 82, status, size=8)

        self.y = max(self.y + 25, TOP + 110)

    def vendor(self) -> None:
        p = self.permit
        creator = p.creator
        self.section_header("BASIC PERMIT DETAILS (VENDOR)", SECTION_COLORS["vendor"])
        rows = [
            ("Name:", p.contractor_name or "-", "Phone:", p.contractor_phone or "-"),
            ("Company:", p.company_name or "-", "Priority:", p.priority or "-"),
            ("Requested By:", creator.full_name if creator else "-", "Requester Email:", creator.email if creator else "-"),
        ]
        for l1, v1, l2, v2 in rows:
            self.ensure(18)
            self.text(45, self.y, l1, FONT_BOLD)
            self.text(130, self.y, v1)
            self.text(310, self.y, l2, FONT_BOLD)
            self.text(400, self.y, v2)
            self.y += 18
        self.y += 7

    def workforce(self) -> None:
        self.section_header("DETAILS OF WORKFORCE INVOLVED", SECTION_COLORS["workers"])
        if not self.workers:
            self.text(50, self.y, "No workers assigned", FONT, 9, MUTED)
            self.y += 28
            return
        columns = [(50, "S.No"), (85, "Worker Name"), (220, "Phone"), (320, "Company"), (430, "Trade / Badge")]
        for x, label in columns:
            self.text(x, self.y, label, FONT_BOLD, 8, MUTED)
        self.y += 14
        self.c.setStrokeColor(BORDER)
        self.c.line(LEFT, self._base(self.y), RIGHT, self._base(self.y))
        self.y += 8
        for i, w in enumerate(self.workers, start=1):
            self.ensure(16)
            trade = " / ".join(v for v in (w.get("trade"), w.get("badgeNumber")) if v) or "-"
            values = [str(i), w.get("name") or "-", w.get("phone") or "-", w.get("company") or "-", trade]
            for (x, _), value in zip(columns, values):
                self.text(x, self.y, str(value)[:28], FONT, 8)
            self.y += 16
        self.y += 10

    def location_and_validity(self) -> None:
        p = self.permit
        self.ensure(90)
        top = self.y
        self.info_box(LEFT, top, 250, 75, "WORK LOCATION", SECTION_COLORS["location"])
        lines = simpleSplit(p.location or "-", FONT, 9, 230)[:2]
        for i, line in enumerate(lines):
            self.text(50, top + 28 + i * 12, line)
        self.text(50, top + 58, f"Timezone: {self.tz}", FONT, 8, MUTED)

        self.info_box(305, top, 250, 75, "PERMIT VALIDITY", SECTION_COLORS["duration"])
        self.text(315, top + 26, "Start Date & Time", FONT_BOLD, 8, MUTED)
        self.text(435, top + 26, "End Date & Time", FONT_BOLD, 8, MUTED)
        self.text(315, top + 40, format_local(p.start_date, self.tz), FONT, 8)
        self.text(435, top + 40, format_local(p.end_date, self.tz), FONT, 8)
        self.text(315, top + 58, "Extended:", FONT_BOLD, 8, MUTED)
        self.text(365, top + 58, "YES" if p.is_extended else "NO", FONT, 8,
                  colors.HexColor("#3b82f6") if p.is_extended else TEXT)
        self.y = top + 90

        if p.is_extended and p.extension_reason:
            self.paragraph(50, 490, f"Extension reason: {p.extension_reason}", size=8, color=MUTED)

    def bullet_list(self, title: str, color: str, items: Iterable) -> None:
        items = [str(i) for i in items if i]
        if not items:
            return
        self.section_header(title, color)
        for item in items:
            self.paragraph(50, 490, f"• {item}", size=9, leading=14, gap=0)
        self.y += 5

    def equipment_grid(self) -> None:
        if not self.equipment:
            return
        self.section_header("LIST OF MANDATORY PPE & TOOLS", SECTION_COLORS["ppe"])
        for start in range(0, len(self.equipment), 3):
            self.ensure(14)
            for col, item in enumerate(self.equipment[start:start + 3]):
                x = 50 + col * 170
                self.fill_rect(x, self.y + 1, 6, 6, SECTION_COLORS["ppe"])
                self.text(x + 10, self.y, str(item)[:32], FONT, 8)
            self.y += 14
        self.y += 10

    def measures_checklist(self) -> None:
        self.section_header("SAFETY MEASURES CHECKLIST", SECTION_COLORS["measures"])
        for i, m in enumerate(self.measures, start=1):
            if not isinstance(m, dict):
                continue
            lines = simpleSplit(f"{i}. {m.get('question', '')}", FONT, 8, 370) or [""]
            self.ensure(max(20, 11 * len(lines) + 6))
            row_top = self.y
            for j, line in enumerate(lines):
                self.text(50, row_top + j * 11, line, FONT, 8)
            x = 440
            for ans in ("YES", "NO", "N/A"):
                selected = m.get("answer") == ans
                self.fill_rect(x, row_top - 2, 30, 14, ANSWER_COLORS[ans] if selected else "#e2e8f0", radius=2)
                self.centered(x, 30, row_top + 1, ans, size=7, color=colors.white if selected else MUTED)
                x += 34
            self.y = row_top + max(20, 11 * len(lines) + 6)

    def instructions(self) -> None:
        self.y += 5
        self.section_header("GENERAL INSTRUCTIONS", SECTION_COLORS["instructions"])
        for line in GENERAL_INSTRUCTIONS:
            self.paragraph(50, 490, line, size=8, gap=6)
        self.y += 10

    def declaration(self) -> None:
        self.y += 5
        self.section_header("INDEMNITY BY APPLICANT", SECTION_COLORS["declaration"])
        self.text(50, self.y, "I/We hereby solemnly declare and undertake that:", FONT_BOLD, 9)
        self.y += 20
        for point in DECLARATION_POINTS:
            color = colors.HexColor("#dc2626") if point.startswith("3.") else TEXT
            self.paragraph(50, 490, point, size=8, color=color, gap=8)
        self.paragraph(50, 490, DECLARATION_FOOTER, font=FONT_ITALIC, size=8, color=MUTED, gap=12)
        self.ensure(30)
        self.fill_rect(50, self.y, 16, 16, "#10b981")
        self.c.setStrokeColor(colors.white)
        self.c.setLineWidth(2)
        path = self.c.beginPath()
        path.moveTo(54, self._base(self.y + 9))
        path.lineTo(57, self._base(self.y + 12))
        path.lineTo(63, self._base(self.y + 5))
        self.c.drawPath(path, stroke=1, fill=0)
        self.c.setLineWidth(1)
        self.text(75, self.y + 3, "I Agree to the Declaration & Undertaking", FONT_BOLD, 9)
        self.y += 35

    def closure(self) -> None:
        p = self.permit
        if not (p.closed_at or p.closure_remarks):
            return
        self.section_header("CLOSURE REMARKS", SECTION_COLORS["closure"])
        self.paragraph(50, 490, p.closure_remarks or "Closed without remarks", size=9)
        if p.closed_at:
            self.text(50, self.y, f"Closed on {format_local(p.closed_at, self.tz)}", FONT, 8, MUTED)
            self.y += 18

    def approvals(self) -> None:
        self.y += 5
        self.section_header("APPROVAL GIVEN BY", SECTION_COLORS["approvals"])
        box_w, box_h = 165, 80
        x = LEFT
        self.ensure(box_h + 5)
        for approval in self.permit.approvals:
            if x + box_w > RIGHT:
                x = LEFT
                self.y += box_h + 5
                self.ensure(box_h + 5)
            self.stroke_rect(x, self.y, box_w, box_h)
            self.text(x + 8, self.y + 8, (approval.approver_role or "").replace("_", " "), FONT_BOLD, 8, MUTED)
            self.text(x + 8, self.y + 24, approval.approver_name or "Pending", FONT, 9)
            decision_color = STATUS_COLORS.get(approval.decision, "#f59e0b")
            self.fill_rect(x + 8, self.y + 42, 60, 16, decision_color, radius=2)
            self.centered(x + 8, 60, self.y + 46, approval.decision, size=8)
            if approval.approved_at:
                self.text(x + 8, self.y + 64, format_local(approval.approved_at, self.tz), FONT, 7, MUTED)
            x += box_w + 10
        self.y += box_h + 15

    def footer(self) -> None:
        if self.y > self.page_break_y:
            self.new_page()
        y = 755
        self.fill_rect(LEFT, y, CONTENT_W, 35, "#f1f5f9")
        self.centered(LEFT, CONTENT_W, y + 5, "This is a computer generated document. No signature is required.",
                      size=8, color=MUTED)
        self.centered(LEFT, CONTENT_W, y + 20,
                      f"Generated on {format_local(self.generated_at, self.tz)} | Permit ID: {self.permit.id}",
                      font=FONT, size=7, color=colors.HexColor("#94a3b8"))

    def render(self) -> bytes:
        self.header()
        self.vendor()
        self.workforce()
        self.location_and_validity()
        self.bullet_list("HAZARDS IDENTIFIED BY APPLICANT", SECTION_COLORS["hazards"], self.hazards)
        self.bullet_list("PRECAUTIONS", SECTION_COLORS["precautions"], self.precautions)
        self.equipment_grid()
        self.measures_checklist()
        self.instructions()
        self.declaration()
        self.closure()
        self.approvals()
        self.footer()
        self.c.showPage()
        self.c.save()
        return self.buffer.getvalue()


def render_permit_pdf(permit: PermitRequest, company_name: Optional[str] = None) -> bytes:
    return PermitPdfRenderer(permit, company_name=company_name).render()
