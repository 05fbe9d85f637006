import inspect
import unittest
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory

from shared.db import Base
import shared.models  # noqa: F401


ROOT = Path(__file__).resolve().parents[1]


def _scripts() -> ScriptDirectory:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    return ScriptDirectory.from_config(cfg)


class TestMigrationChain(unittest.TestCase):
    def test_single_linear_head(self):
        scripts = _scripts()
        self.assertEqual(scripts.get_heads(), ["20260615_0002"])
        chain = [s.revision for s in scripts.walk_revisions()]
        self.assertEqual(chain, ["20260615_0002", "20260601_0001"])

    def test_every_model_table_is_created(self):
        created = set()
        for script in _scripts().walk_revisions():
            source = inspect.getsource(script.module.upgrade)
            for table in Base.metadata.tables:
                if f'"{table}"' in source:
                    created.add(table)
        self.assertEqual(created, set(Base.metadata.tables))

    def test_env_only_manages_model_tables(self):
        source = (ROOT / "migrations" / "env.py").read_text(encoding="utf-8")
        self.assertIn("compare_type=True", source)
        self.assertIn("include_object=_include_object", source)
        self.assertNotIn("noqa", source)


if __name__ == "__main__":
    unittest.main()
