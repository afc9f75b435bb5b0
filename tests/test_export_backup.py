import io
import json

import httpx
from openpyxl import load_workbook
from sqlmodel import Session

from tablepos import backup
from tablepos.config import Settings
from tablepos.engine import TableSessionEngine
from tablepos.export import export_snapshot, payment_label
from tablepos.models import Order


def _paid_order(pos):
    order = pos.open_table("4")
    pos.add_item(order.id, "Coke", "Drinks", 40, quantity=2)
    pos.add_item(order.id, "Paneer Tikka", "Food", 220)
    return pos.process_payment(order.id, 100, 200)


def test_snapshot_has_three_sheets(pos, session, menu):
    order = _paid_order(pos)

    workbook = load_workbook(io.BytesIO(export_snapshot(session)))

    assert workbook.sheetnames == ["Sales History", "Menu Items", "Categories"]
    sales = list(workbook["Sales History"].iter_rows(values_only=True))
    assert sales[0] == ("Date", "Time", "Table", "Item", "Qty", "Rate", "Total", "Payment", "Bill ID")
    assert [row[3] for row in sales[1:]] == ["Coke", "Paneer Tikka"]
    assert sales[1][2] == "4"
    assert sales[1][4] == 2
    assert sales[1][7] == "Mix"
    assert sales[1][8] == order.id[:6]
    menu_rows = list(workbook["Menu Items"].iter_rows(values_only=True))
    assert ("Lassi", 60, "No", menu["Lassi"].category_id) in menu_rows
    assert len(list(workbook["Categories"].iter_rows(values_only=True))) == 3


def test_payment_label():
    assert payment_label(Order(table_label="1", payment_cash=10, payment_online=0)) == "Cash"
    assert payment_label(Order(table_label="1", payment_cash=0, payment_online=10)) == "Online"
    assert payment_label(Order(table_label="1", payment_cash=5, payment_online=5)) == "Mix"


def test_payment_marks_backup_needed(pos, session):
    assert backup.needs_backup(session) is False
    _paid_order(pos)
    assert backup.needs_backup(session) is True


def test_sync_without_token_keeps_flag(pos, session):
    _paid_order(pos)

    result = backup.sync_backup(session, Settings(drive_access_token=None))

    assert result.success is False
    assert result.message == "Backup is not configured"
    assert backup.needs_backup(session) is True


class FakeDrive:
    def __init__(self, existing_file=None, fail_upload=False, on_upload=None):
        self.existing_file = existing_file
        self.fail_upload = fail_upload
        self.on_upload = on_upload
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == "/drive/v3/files":
            query = request.url.params["q"]
            if "google-apps.folder" in query:
                return httpx.Response(200, json={"files": []})
            files = [{"id": self.existing_file}] if self.existing_file else []
            return httpx.Response(200, json={"files": files})
        if request.method == "POST" and path == "/drive/v3/files":
            return httpx.Response(200, json={"id": "folder-1"})
        if path.startswith("/upload/drive/v3/files"):
            if self.on_upload is not None:
                self.on_upload()
            if self.fail_upload:
                return httpx.Response(500, json={"error": "backend error"})
            return httpx.Response(200, json={"id": self.existing_file or "file-1"})
        return httpx.Response(404)


def test_sync_uploads_and_clears_flag(pos, session):
    _paid_order(pos)
    drive = FakeDrive()
    settings = Settings(drive_access_token="token-123")

    with httpx.Client(transport=httpx.MockTransport(drive)) as client:
        result = backup.sync_backup(session, settings, client=client)

    assert result.success is True
    assert backup.needs_backup(session) is False
    methods = [(request.method, request.url.path) for request in drive.requests]
    assert methods == [
        ("GET", "/drive/v3/files"),
        ("POST", "/drive/v3/files"),
        ("GET", "/drive/v3/files"),
        ("POST", "/upload/drive/v3/files"),
    ]
    assert json.loads(drive.requests[1].content)["name"] == "Restaurant_POS_Data"
    upload = drive.requests[-1]
    assert upload.headers["Authorization"] == "Bearer token-123"
    assert upload.url.params["uploadType"] == "multipart"
    assert b"Master_Backup.xlsx" in upload.content


def test_sync_patches_existing_file(pos, session):
    _paid_order(pos)
    drive = FakeDrive(existing_file="file-9")

    with httpx.Client(transport=httpx.MockTransport(drive)) as client:
        result = backup.sync_backup(session, Settings(drive_access_token="t"), client=client)

    assert result.success is True
    assert (drive.requests[-1].method, drive.requests[-1].url.path) == ("PATCH", "/upload/drive/v3/files/file-9")


def test_failed_upload_keeps_flag_and_order(pos, session):
    order = _paid_order(pos)
    drive = FakeDrive(fail_upload=True)

    with httpx.Client(transport=httpx.MockTransport(drive)) as client:
        result = backup.sync_backup(session, Settings(drive_access_token="t"), client=client)

    assert result.success is False
    assert backup.needs_backup(session) is True
    assert pos.get_order(order.id).status == "paid"


def test_payment_during_upload_keeps_flag(pos, session, db_engine):
    _paid_order(pos)

    def pay_another_table():
        with Session(db_engine) as other:
            other_pos = TableSessionEngine(other)
            order = other_pos.open_table("7")
            other_pos.add_item(order.id, "Coke", "Drinks", 40)
            other_pos.process_payment(order.id, 40, 0)

    drive = FakeDrive(on_upload=pay_another_table)

    with httpx.Client(transport=httpx.MockTransport(drive)) as client:
        result = backup.sync_backup(session, Settings(drive_access_token="t"), client=client)

    assert result.success is True
    assert backup.needs_backup(session) is True


def test_clear_dirty_ignores_stale_revision(pos, session):
    _paid_order(pos)
    first = backup.dirty_revision(session)
    backup.mark_dirty(session)
    session.commit()

    assert backup.clear_dirty(session, first) is False
    assert backup.clear_dirty(session, backup.dirty_revision(session)) is True
    session.commit()
    assert backup.needs_backup(session) is False
