import io
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from moral_story_maker.common.errors import ValidationError
from moral_story_maker.common.models import BANNED_PHRASES, Story

MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _term_pattern(term: str) -> str:
    parts = [re.escape(p) for p in (term or "").split() if p.strip()]
    if not parts:
        return ""
    return r"\b" + r"\s+".join(parts) + r"\b"


def find_banned_terms(text: str, extra_terms: Iterable[str] = ()) -> List[str]:
    hits = []
    for term in list(BANNED_PHRASES) + list(extra_terms or []):
        pattern = _term_pattern(term)
        if pattern and re.search(pattern, text or "", flags=re.IGNORECASE):
            hits.append(term.strip().lower())
    return sorted(set(hits))


def check_prompt_safety(text: str, extra_terms: Iterable[str] = ()) -> None:
    """Raise ValidationError when ``text`` contains a banned phrase."""
    hits = find_banned_terms(text, extra_terms)
    if hits:
        raise ValidationError(
            f"Content safety check failed: {', '.join(hits)}. Please rephrase."
        )


def month_key(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower())
    return slug.strip("-") or "story"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# -----------------------------
# Packaging / Exports
# -----------------------------
def build_story_pdf(story: Story, cover_img_bytes: Optional[bytes] = None) -> bytes:
    """Render a story as a PDF: optional cover, title + body, moral, enrichment."""
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import getSampleStyleSheet
    from reportlab.lib.units import cm
    from reportlab.lib.utils import ImageReader
    from reportlab.pdfgen import canvas
    from reportlab.platypus import Frame, Paragraph, Spacer

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    W, H = A4
    c.setTitle(story.title or "Story")

    styles = getSampleStyleSheet()
    heading = styles["Heading1"]
    subheading = styles["Heading3"]
    body = styles["BodyText"]
    body.fontSize = 12
    body.leading = 16

    def para(text: str, style) -> Paragraph:
        safe = (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        return Paragraph(safe.replace("\n", "<br/>"), style)

    def draw_flow(flow: list) -> None:
        # Frame.addFromList consumes what fits; keep adding pages until empty
        while flow:
            frame = Frame(2 * cm, 2 * cm, W - 4 * cm, H - 4 * cm, showBoundary=0)
            before = len(flow)
            frame.addFromList(flow, c)
            c.showPage()
            if len(flow) == before:
                flow.pop(0)

    if cover_img_bytes:
        img = ImageReader(io.BytesIO(cover_img_bytes))
        iw, ih = img.getSize()
        scale = min((W - 4 * cm) / iw, (H - 4 * cm) / ih)
        w, h = iw * scale, ih * scale
        c.drawImage(img, (W - w) / 2, (H - h) / 2, width=w, height=h)
        c.showPage()

    flow = [para(story.title, heading), Spacer(1, 0.4 * cm)]
    for block in (story.content or "").split("\n\n"):
        if block.strip():
            flow.append(para(block.strip(), body))
            flow.append(Spacer(1, 0.2 * cm))
    if story.moral:
        flow += [para("Moral", subheading), para(story.moral, body)]

    enrichment = [
        ("Reflection questions", story.reflection_questions),
        ("Action steps", story.action_steps),
        ("Discussion prompts", story.discussion_prompts),
    ]
    for label, items in enrichment:
        if items:
            flow.append(para(label, subheading))
            flow += [para(f"- {item}", body) for item in items]
    if story.related_quote:
        flow += [para("Related quote", subheading), para(story.related_quote, body)]

    draw_flow(flow)
    c.save()
    return buf.getvalue()
