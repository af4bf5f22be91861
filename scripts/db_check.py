import sys
from pathlib import Path

from printvault.config import load_settings
from printvault.db import REQUIRED_TABLES, make_engine
from printvault.store import ArchiveStore

settings = load_settings()
DB = Path(sys.argv[1]) if len(sys.argv) > 1 else settings.database_path
print("DB:", DB)
if not DB.exists():
    print("missing")
    sys.exit(1)

# probe only; never migrate a file that may be damaged
store = ArchiveStore(make_engine(DB, settings.lock_timeout))

# integrity
print("integrity_check:", store.integrity_check())
print("corrupted:", "yes" if store.is_corrupted() else "no")

# show row counts if possible
def count(table):
    try:
        return store.count_rows(table)
    except Exception as e:
        return f"ERR({e.__class__.__name__})"

for t in REQUIRED_TABLES:
    print(f"{t}: {count(t)}")

corrupted = store.is_corrupted()
store.dispose()
sys.exit(1 if corrupted else 0)
