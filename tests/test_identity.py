# tests/test_identity.py
import re

from ordertrack.identity import generate_id

UUID_V4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


def test_generate_id_is_uuid4_text():
    order_id = generate_id()
    assert len(order_id) == 36
    assert UUID_V4.match(order_id)


def test_generate_id_is_unique():
    ids = {generate_id() for _ in range(1000)}
    assert len(ids) == 1000
