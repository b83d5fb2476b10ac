"""Tests for the result writer process protocol."""

import json

from ecom_crawler.storage.result_writer import ResultWriter, handle_request


def test_persist_request_writes_json(tmp_path):
    payload = [{'product_url': 'https://shop.test/products/a'}]

    ack = handle_request({'operation': 'persist', 'key': 'nested/shop_test_products.json', 'payload': payload}, tmp_path)

    assert ack == {'status': 'ok', 'key': 'nested/shop_test_products.json', 'size': 1}
    assert json.loads((tmp_path / 'nested' / 'shop_test_products.json').read_text()) == payload


def test_unknown_operation_is_an_error_ack(tmp_path):
    ack = handle_request({'operation': 'delete', 'key': 'x.json'}, tmp_path)
    assert ack['status'] == 'error'
    assert ack['key'] == 'x.json'
    assert 'Unsupported operation' in ack['message']


def test_unwritable_target_is_an_error_ack(tmp_path):
    (tmp_path / 'taken').write_text('file, not a directory')

    ack = handle_request({'operation': 'persist', 'key': 'taken/out.json', 'payload': []}, tmp_path)

    assert ack['status'] == 'error'


def test_writer_process_round_trip(tmp_path):
    with ResultWriter(str(tmp_path)) as writer:
        writer.persist('a.json', [1, 2, 3])
        writer.persist('b.json', {'k': 'v'})
    acks = writer.acks

    assert sorted((ack['key'], ack['status'], ack['size']) for ack in acks) == [
        ('a.json', 'ok', 3),
        ('b.json', 'ok', 1),
    ]
    assert json.loads((tmp_path / 'a.json').read_text()) == [1, 2, 3]
