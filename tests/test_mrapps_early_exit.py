from unittest import mock

from distlab.mr.worker import KeyValue
from distlab.mrapps import early_exit


def test_map_emits_filename_once():
    assert early_exit.map_fn("pg-grimm.txt", "any contents") == [KeyValue("pg-grimm.txt", "1")]


def test_reduce_counts_without_delay():
    with mock.patch("time.sleep") as sleep_mock:
        assert early_exit.reduce_fn("pg-grimm.txt", ["1", "1"]) == "2"
    assert sleep_mock.call_count == 0


def test_reduce_stalls_for_selected_keys():
    with mock.patch("time.sleep") as sleep_mock:
        assert early_exit.reduce_fn("pg-sherlock_holmes.txt", ["1"]) == "1"
        assert early_exit.reduce_fn("pg-tom_sawyer.txt", ["1", "1", "1"]) == "3"
    assert sleep_mock.call_args_list == [mock.call(3), mock.call(3)]