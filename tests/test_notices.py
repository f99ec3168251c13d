import io

import pytest

from academypro.database.models import Lecture, Notice, NoticeFile
from academypro.errors import BadRequestError, NotFoundError, StorageError
from academypro.services import notice_files, notices


def _uploads(**files):
    return [(name, io.BytesIO(data)) for name, data in files.items()]


@pytest.fixture
def lecture(world):
    lecture = Lecture(lecture_name="Math", teacher_id="teacher1", academy_id="acad1")
    world.add(lecture)
    world.commit()
    return lecture


# ─── Identifiers ──────────────────────────────────────────────────────────────

def test_notice_id_round_trip_with_underscored_academy():
    notice_id = notice_files.format_notice_id("my_academy", 3, 7)
    assert notice_id == "my_academy_3_7"
    assert notice_files.parse_notice_id(notice_id) == ("my_academy", 3, 7)


@pytest.mark.parametrize("bad", ["", "acad", "acad_1", "acad_x_1", "_1_2"])
def test_malformed_notice_ids(bad):
    with pytest.raises(BadRequestError) as err:
        notice_files.parse_notice_id(bad)
    assert err.value.error_code == "INVALID_NOTICE_ID"


def test_safe_file_name_strips_directories():
    assert notice_files.safe_file_name("../../etc/passwd") == "passwd"
    with pytest.raises(BadRequestError):
        notice_files.safe_file_name("..")


# ─── Numbering ────────────────────────────────────────────────────────────────

def test_numbers_are_sequential_per_scope(world, lecture, storage, notice_root):
    first = notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "a", "a")
    second = notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "b", "b")
    other = notices.create_notice(world, storage, notice_root, "acad1", lecture.lecture_id, "teacher1", "c", "c")

    assert first.notice_id == "acad1_0_1"
    assert second.notice_id == "acad1_0_2"
    assert other.notice_id == f"acad1_{lecture.lecture_id}_1"


def test_unknown_lecture_is_rejected(world, storage, notice_root):
    with pytest.raises(NotFoundError):
        notices.create_notice(world, storage, notice_root, "acad1", 999, "chief1", "a", "a")


# ─── Attachments ──────────────────────────────────────────────────────────────

def test_attachments_are_mirrored_and_reclaimed(world, storage, notice_root):
    notice = notices.create_notice(
        world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
        _uploads(**{"a.txt": b"alpha", "b.pdf": b"beta"}),
    )

    assert sorted(f.file_name for f in notice.files) == ["a.txt", "b.pdf"]
    assert storage.objects == {
        "public/notice/acad1/0/1/a.txt": b"alpha",
        "public/notice/acad1/0/1/b.pdf": b"beta",
    }
    assert not notice_files.scoped_dir(notice_root, "acad1", 0, 1).exists()
    assert not (notice_root / "acad1").exists()
    assert list((notice_root / notice_files.STAGING_DIR).iterdir()) == []


def test_oversized_file_leaves_nothing_behind(world, storage, notice_root, monkeypatch):
    monkeypatch.setattr(notice_files, "MAX_FILE_SIZE", 4)

    with pytest.raises(BadRequestError) as err:
        notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
                              _uploads(**{"big.bin": b"0123456789"}))

    assert err.value.error_code == "FILE_TOO_LARGE"
    assert world.query(Notice).count() == 0
    assert list((notice_root / notice_files.STAGING_DIR).iterdir()) == []


def test_failed_mirror_keeps_notice_and_leaves_orphan(world, storage, notice_root):
    storage.fail_uploads = True

    with pytest.raises(StorageError):
        notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
                              _uploads(**{"a.txt": b"alpha"}))

    assert world.query(Notice).filter(Notice.notice_id == "acad1_0_1").count() == 1
    assert world.query(NoticeFile).count() == 1
    assert notice_files.find_orphans(notice_root) == [("acad1", 0, 1)]

    storage.fail_uploads = False
    assert notice_files.reconcile_orphans(notice_root, storage) == ["acad1_0_1"]
    assert storage.objects == {"public/notice/acad1/0/1/a.txt": b"alpha"}
    assert notice_files.find_orphans(notice_root) == []


def test_reconcile_keeps_directories_that_still_fail(world, storage, notice_root):
    storage.fail_uploads = True
    with pytest.raises(StorageError):
        notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
                              _uploads(**{"a.txt": b"alpha"}))

    assert notice_files.reconcile_orphans(notice_root, storage) == []
    assert notice_files.find_orphans(notice_root) == [("acad1", 0, 1)]


# ─── Read / update / delete ───────────────────────────────────────────────────

def test_reading_counts_views(world, storage, notice_root):
    notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c")

    notices.read_notice(world, "acad1_0_1", "acad1")
    notice = notices.read_notice(world, "acad1_0_1", "acad1")

    assert notice.views == 2


def test_notice_is_scoped_to_its_academy(world, storage, notice_root):
    notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c")
    with pytest.raises(NotFoundError):
        notices.get_notice(world, "acad1_0_1", "acad2")


def test_list_is_paged_newest_first(world, storage, notice_root):
    for i in range(5):
        notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", f"t{i}", "c")

    page_one = notices.list_notices(world, "acad1", 0, page=1, page_size=2)
    page_three = notices.list_notices(world, "acad1", 0, page=3, page_size=2)

    assert [n.notice_num for n in page_one] == [5, 4]
    assert [n.notice_num for n in page_three] == [1]


def test_update_swaps_attachments(world, storage, notice_root):
    notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
                          _uploads(**{"old.txt": b"old", "keep.txt": b"keep"}))

    notice = notices.update_notice(
        world, storage, notice_root, "acad1_0_1", "acad1",
        title="new title", delete_files=["old.txt"], uploads=_uploads(**{"new.txt": b"new"}),
    )

    assert notice.title == "new title"
    assert notice.content == "c"
    assert sorted(f.file_name for f in notice.files) == ["keep.txt", "new.txt"]
    assert sorted(storage.objects) == [
        "public/notice/acad1/0/1/keep.txt",
        "public/notice/acad1/0/1/new.txt",
    ]
    assert notice_files.find_orphans(notice_root) == []


def test_delete_removes_objects_and_rows(world, storage, notice_root):
    notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t", "c",
                          _uploads(**{"a.txt": b"alpha"}))
    notices.create_notice(world, storage, notice_root, "acad1", 0, "chief1", "t2", "c")

    notices.delete_notice(world, storage, notice_root, "acad1_0_1", "acad1")

    assert storage.objects == {}
    assert [n.notice_id for n in world.query(Notice).all()] == ["acad1_0_2"]
    assert world.query(NoticeFile).count() == 0


def test_reclaim_of_missing_directory_is_fine(tmp_path):
    notice_files.reclaim(tmp_path / "acad1" / "0" / "1")
