import json

import pytest

from app import create_app
from mail_transport import MailTransport, TransportError


class RecordingTransport(MailTransport):
    name = "recording"

    def __init__(self, fail_on_call=None):
        self.sent = []
        self.fail_on_call = fail_on_call

    def send_message(self, sender, to, subject, html, text):
        call_number = len(self.sent) + 1
        if self.fail_on_call == call_number:
            raise TransportError("provider rejected the message")
        self.sent.append(
            {"sender": sender, "to": to, "subject": subject, "html": html, "text": text}
        )
        return f"msg-{call_number}"


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "db.json"
    path.write_text(
        json.dumps(
            {
                "products": [
                    {"id": 1, "name": "Chunky Knit Throw", "price": 4500},
                    {"id": 2, "name": "Crochet Bucket Hat", "price": 1200},
                ],
                "orders": [],
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def base_config(db_path, tmp_path):
    return {
        "TESTING": True,
        "API_URL": "",
        "FROM_EMAIL": "orders@yarnly.test",
        "MAIL_SENDER_NAME": "Yarnly Chic",
        "OWNER_EMAIL": "owner@yarnly.test",
        "MAIL_TRANSPORT": "",
        "MAIL_API_TOKEN": "",
        "RESEND_API_KEY": "",
        "SMTP_HOST": "",
        "DB_PATH": str(db_path),
        "IMAGES_FOLDER": str(tmp_path / "images"),
    }


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def app(base_config, transport):
    return create_app(base_config, mail_transport=transport)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sample_order():
    return {
        "id": 1042,
        "createdAt": "2024-05-01T10:30:00",
        "customer": {
            "firstName": "Amina",
            "lastName": "Otieno",
            "phone": "0712345678",
            "email": "amina@example.com",
            "address": "12 Moi Avenue",
            "city": "Nairobi",
        },
        "items": [
            {"name": "Chunky Knit Throw", "image": "throw.jpg", "quantity": 1, "price": 700},
            {
                "name": "Crochet Bucket Hat",
                "image": "https://cdn.example.com/hat.png",
                "quantity": 2,
                "price": 150,
            },
        ],
        "pricing": {"subtotal": 1000, "shipping": 0, "total": 1000},
        "shippingMethod": {"name": "Pickup"},
        "payment": {"pochiNumber": "0700111222", "mpesaCode": "SJK82HD91"},
        "note": "Gift wrap please",
    }
