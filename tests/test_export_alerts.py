import unittest
import os
import tempfile

from guardiao.db import Store
from guardiao.export_alerts import main


class TestExportAlerts(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_url = f"sqlite:///{os.path.join(self.tmp.name, 'alerts.db')}"
        store = Store(self.db_url)
        store.init_db()
        store.create_alert(type="LINK_SUSPECT", url="http://bit.ly/a", description="Link a",
                           severity="high", score=95)
        store.create_alert(type="REPORT_SUSPECT", url=None, description="Report b",
                           severity="medium")
        store.engine.dispose()

    def tearDown(self):
        self.tmp.cleanup()

    def test_writes_filtered_csv(self):
        out = os.path.join(self.tmp.name, "out.csv")
        rc = main(["--database-url", self.db_url, "--severity", "high", "--output", out])
        self.assertEqual(rc, 0)
        with open(out, encoding="utf-8") as fh:
            lines = fh.read().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn("http://bit.ly/a", lines[1])

    def test_rejects_unknown_status(self):
        with self.assertRaises(SystemExit):
            main(["--database-url", self.db_url, "--status", "closed"])


if __name__ == '__main__':
    unittest.main()
