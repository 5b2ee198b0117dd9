"""Votes spreadsheet export. Run from server/: python -m tools.export_votes [category] [YYYY-MM-DD]"""
import io
import os
import sys
from datetime import date, datetime, time, timedelta
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font

from models import Nominee, Vote, db

HEADERS = ["Vote ID", "User ID", "Nominee", "Category", "Date"]
EXPORT_LIMIT = 500


def parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValueError(f"Invalid date filter {value!r}, expected YYYY-MM-DD") from None


def query_votes(category: Optional[str] = None, day: Optional[date] = None, limit: int = EXPORT_LIMIT):
    query = db.session.query(Vote, Nominee).join(Nominee, Vote.nominee_id == Nominee.id)
    if category and category != 'all':
        query = query.filter(Nominee.category == category)
    if day:
        start = datetime.combine(day, time.min)
        query = query.filter(Vote.created_at >= start, Vote.created_at < start + timedelta(days=1))
    return query.order_by(Vote.created_at.desc(), Vote.id.desc()).limit(limit).all()


def build_votes_workbook(category: Optional[str] = None, day: Optional[date] = None) -> bytes:
    """Votes as an xlsx file, newest first. No matching votes gives a header-only sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Votes"
    ws.append(HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for vote, nominee in query_votes(category, day):
        created = vote.created_at.strftime("%Y-%m-%d %H:%M:%S") if vote.created_at else ""
        ws.append([vote.id, vote.user_id, nominee.name, nominee.category, created])

    for column, width in zip("ABCDE", (10, 40, 32, 28, 20)):
        ws.column_dimensions[column].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_filename(category: Optional[str] = None, day: Optional[date] = None) -> str:
    parts = ["votes"]
    if category and category != 'all':
        parts.append(category.lower().replace(" ", "_"))
    if day:
        parts.append(day.isoformat())
    else:
        parts.append(datetime.utcnow().strftime("%Y-%m-%d"))
    return "_".join(parts) + ".xlsx"


if __name__ == "__main__":
    from app import create_app

    category = sys.argv[1] if len(sys.argv) > 1 else None
    day = parse_day(sys.argv[2]) if len(sys.argv) > 2 else None

    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(os.path.dirname(script_dir))
    output_dir = os.path.join(project_root, "admin")
    os.makedirs(output_dir, exist_ok=True)

    app = create_app()
    with app.app_context():
        data = build_votes_workbook(category, day)
    output_file = os.path.join(output_dir, export_filename(category, day))
    with open(output_file, "wb") as f:
        f.write(data)
    print(f"Exported votes to {output_file}")
