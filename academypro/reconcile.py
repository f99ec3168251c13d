"""
Re-mirror notice attachments left on local disk after a failed upload.

A notice directory under NOTICE_ROOT/<academy>/<lecture>/<num>/ only
survives when copying it to object storage failed. This script retries
the copy for every such directory and removes the ones that succeed.

Usage:
  python -m academypro.reconcile
"""

from dotenv import load_dotenv

load_dotenv()

import logging

from academypro.services.notice_files import NOTICE_ROOT, find_orphans, reconcile_orphans
from academypro.services.object_storage import ObjectStorage


def run():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(name)s  %(message)s")
    pending = find_orphans(NOTICE_ROOT)
    print(f"Orphaned notice directories: {len(pending)}")
    if not pending:
        return

    storage = ObjectStorage().open()
    try:
        recovered = reconcile_orphans(NOTICE_ROOT, storage)
    finally:
        storage.close()
    print(f"Recovered {len(recovered)}/{len(pending)}")
    for notice_id in recovered:
        print(f"  - {notice_id}")


if __name__ == "__main__":
    run()
