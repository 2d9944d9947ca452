import unittest
from unittest.mock import Mock

from datasync.config import SyncAction
from datasync.core import SQLiteConnector
from datasync.errors import IntegrityError, StoreError
from datasync.services import ConfigService, DuplicateKey, SyncService
from tests.fixtures import make_document


def provided(employee_id, name, dept):
    return {"employee_id": employee_id, "name": name, "dept": dept}


def current(user_id, name, dept):
    return {"user_id": user_id, "name": name, "dept": dept}


class TestSyncService(unittest.TestCase):
    """
    使用 SQLite 内存数据库对完整判定流程进行测试。
    """

    def setUp(self):
        self.document = make_document()
        self.connector = SQLiteConnector()
        self.connector.connect()

    def tearDown(self):
        self.connector.disconnect()

    def run_sync(self, provided_rows, current_rows):
        config = ConfigService().load(self.document)
        return SyncService(config, self.connector).run(provided_rows, current_rows)

    @staticmethod
    def by_key(report):
        return {record.values["syokuin_no"]: record for record in report.records}

    def test_basic_classification(self):
        """
        测试：新增、变更、删除、保持四种判定结果。
        """
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales"), provided("E002", "Sato", "Dev"), provided("E003", "Suzuki", "Ops")],
            [current("E002", "Sato", "Ops"), current("E003", "Suzuki", "Ops"), current("E004", "Takahashi", "HR")],
        )
        records = self.by_key(report)

        self.assertEqual(records["E001"].action, SyncAction.ADD)
        self.assertEqual(records["E001"].values, {"syokuin_no": "E001", "name": "Tanaka", "dept": "Sales"})
        self.assertEqual(records["E002"].action, SyncAction.UPDATE)
        self.assertEqual(records["E002"].values["dept"], "Dev")
        self.assertEqual(records["E003"].action, SyncAction.KEEP)
        self.assertEqual(records["E004"].action, SyncAction.DELETE)
        self.assertEqual(records["E004"].values["name"], "Takahashi")
        self.assertEqual(
            report.counts,
            {SyncAction.ADD: 1, SyncAction.UPDATE: 1, SyncAction.DELETE: 1, SyncAction.KEEP: 1}
        )
        self.assertFalse(report.has_duplicates)
        self.assertIsNone(report.integrity_error())

    def test_records_in_phase_order(self):
        report = self.run_sync(
            [provided("E003", "Suzuki", "Ops"), provided("E002", "Sato", "Dev"), provided("E001", "Tanaka", "Sales")],
            [current("E004", "Takahashi", "HR"), current("E003", "Suzuki", "Ops"), current("E002", "Sato", "Ops")],
        )
        self.assertEqual(
            [(r.action, r.values["syokuin_no"]) for r in report.records],
            [
                (SyncAction.ADD, "E001"),
                (SyncAction.UPDATE, "E002"),
                (SyncAction.DELETE, "E004"),
                (SyncAction.KEEP, "E003"),
            ]
        )

    def test_each_key_classified_once(self):
        provided_rows = [provided(f"E{i:03d}", f"N{i}", "A" if i % 2 else "B") for i in range(1, 21)]
        current_rows = [current(f"E{i:03d}", f"N{i}", "A") for i in range(10, 31)]
        report = self.run_sync(provided_rows, current_rows)

        keys = [r.values["syokuin_no"] for r in report.records]
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual(len(keys), 30)
        self.assertEqual(report.counts[SyncAction.ADD], 9)
        self.assertEqual(report.counts[SyncAction.DELETE], 10)

    def test_null_safe_comparison(self):
        """
        测试：两侧都为 NULL 视为相同；一侧为 NULL 视为不同。
        """
        report = self.run_sync(
            [provided("E010", "Ito", None), provided("E011", "Kato", None)],
            [current("E010", "Ito", None), current("E011", "Kato", "Ops")],
        )
        records = self.by_key(report)

        self.assertEqual(records["E010"].action, SyncAction.KEEP)
        self.assertIsNone(records["E010"].values["dept"])
        self.assertEqual(records["E011"].action, SyncAction.UPDATE)
        # 提供数据为空时按优先级取现有数据的值
        self.assertEqual(records["E011"].values["dept"], "Ops")

    def test_fixed_value_fallback(self):
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["dept"]["sources"].append(
            {"type": "fixed_value", "value": "未所属", "priority": 3}
        )
        report = self.run_sync([provided("E001", "Tanaka", None)], [current("E009", "Old", "")])
        records = self.by_key(report)

        self.assertEqual(records["E001"].values["dept"], "未所属")
        self.assertEqual(records["E009"].action, SyncAction.DELETE)
        self.assertEqual(records["E009"].values["dept"], "未所属")

    def test_values_with_quotes_and_unicode(self):
        report = self.run_sync(
            [provided("E001", "O'Brien; DROP TABLE sync_result; --", "開発部")],
            [],
        )
        record = report.records[0]
        self.assertEqual(record.values["name"], "O'Brien; DROP TABLE sync_result; --")
        self.assertEqual(record.values["dept"], "開発部")

    def test_required_field_missing_row_skipped(self):
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales"), provided("", "Nobody", "Sales"), provided(None, "Nobody", None)],
            [],
        )
        errors = report.row_errors["provided_data"]

        self.assertEqual(len(report.records), 1)
        self.assertEqual(errors.total, 3)
        self.assertEqual(errors.skipped, 2)
        self.assertEqual(errors.error_rate, 66.67)
        self.assertIn("provided_data 第 2 行", errors.sample[0])
        self.assertEqual(report.row_errors["current_data"].skipped, 0)

    def test_filters_applied_before_classification(self):
        self.document["data_filters"] = {
            "provided_data": {"enabled": True, "rules": [{"field": "employee_id", "type": "exclude", "glob": "Z*"}]},
            "current_data": {"enabled": True, "rules": [{"field": "user_id", "type": "exclude", "glob": "Z*"}]},
        }
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales"), provided("Z001", "Test", "QA")],
            [current("Z999", "Old Test", "QA")],
        )

        self.assertEqual([r.values["syokuin_no"] for r in report.records], ["E001"])
        self.assertEqual(report.filter_stats["provided_data"].excluded, 1)
        self.assertEqual(report.filter_stats["current_data"].exclusion_rate, 100.0)

    def test_excluded_current_rows_output_as_keep(self):
        """
        测试：开启 output_excluded_as_keep 后，被排除的现有数据作为 KEEP 输出。
        """
        self.document["data_filters"] = {
            "current_data": {"enabled": True, "output_excluded_as_keep": True, "rules": [
                {"field": "user_id", "type": "exclude", "glob": "Z*"}
            ]},
        }
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales")],
            [current("E001", "Tanaka", "Sales"), current("Z999", "Old Test", "QA")],
        )
        records = self.by_key(report)

        self.assertEqual(records["E001"].action, SyncAction.KEEP)
        self.assertEqual(records["Z999"].action, SyncAction.KEEP)
        self.assertEqual(records["Z999"].values, {"syokuin_no": "Z999", "name": "Old Test", "dept": "QA"})
        self.assertEqual(report.counts[SyncAction.KEEP], 2)

    def test_excluded_row_not_duplicated_when_key_already_classified(self):
        """
        测试：被过滤的现有数据不参与比较，同键的提供数据判定为 ADD，被排除的行不再作为 KEEP 重复输出。
        """
        self.document["data_filters"] = {
            "current_data": {"enabled": True, "output_excluded_as_keep": True, "rules": [
                {"field": "name", "type": "exclude", "value": "Retired"}
            ]},
        }
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales")],
            [current("E001", "Retired", "Sales")],
        )
        self.assertEqual([r.action for r in report.records], [SyncAction.ADD])

    def test_excluded_row_without_key_counted_as_row_error(self):
        """
        测试：键字段为空的现有数据即使没有标记 required，也作为不合法行计数，而不是在判定中消失。
        """
        self.document["tables"]["current_data"]["columns"][1]["required"] = False
        self.document["data_filters"] = {
            "current_data": {"enabled": True, "output_excluded_as_keep": True, "rules": [
                {"field": "name", "type": "exclude", "value": "Retired"}
            ]},
        }
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales")],
            [current(None, "Retired", "Sales")],
        )
        errors = report.row_errors["current_data"]

        self.assertEqual([r.action for r in report.records], [SyncAction.ADD])
        self.assertEqual(errors.skipped, 1)
        self.assertIn("user_id", errors.sample[0])

    def test_provided_row_without_key_not_added(self):
        self.document["tables"]["provided_data"]["columns"][1]["required"] = False
        report = self.run_sync(
            [provided("E001", "Tanaka", "Sales"), provided(None, "Nobody", "Sales")],
            [],
        )
        self.assertEqual([r.values["syokuin_no"] for r in report.records], ["E001"])
        self.assertEqual(report.row_errors["provided_data"].skipped, 1)

    def test_duplicate_keys_reported(self):
        """
        测试：提供数据中键重复时结果表出现重复键，作为警告报告而不中止。
        """
        report = self.run_sync(
            [provided("E005", "A", "X"), provided("E005", "B", "Y"), provided("E006", "C", "Z")],
            [],
        )

        self.assertTrue(report.has_duplicates)
        self.assertEqual(report.duplicates, [DuplicateKey(key=("E005",), count=2)])
        error = report.integrity_error()
        self.assertIsInstance(error, IntegrityError)
        self.assertEqual(error.duplicates, [("E005",)])
        self.assertEqual(len(report.records), 3)

    def test_result_table_rebuilt_each_run(self):
        config = ConfigService().load(self.document)
        service = SyncService(config, self.connector)
        service.run([provided("E001", "Tanaka", "Sales")], [])
        report = service.run([provided("E002", "Sato", "Dev")], [])

        self.assertEqual([r.values["syokuin_no"] for r in report.records], ["E002"])

    def test_store_error_aborts_remaining_phases(self):
        """
        测试：某个阶段执行失败时抛出 StoreError，后续阶段不再执行。
        """
        config = ConfigService().load(self.document)
        connector = Mock()
        connector.dialect = "sqlite"
        connector.execute.side_effect = [0, StoreError("语句执行失败: disk I/O error")]
        service = SyncService(config, connector)

        with self.assertRaises(StoreError):
            service.run_phases()
        self.assertEqual(connector.execute.call_count, 2)
        connector.query.assert_not_called()


if __name__ == '__main__':
    unittest.main()
