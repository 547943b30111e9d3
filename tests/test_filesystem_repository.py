import asyncio
import io
import json

import pytest

import apps.builds.filesystem as fs
from apps.builds.exceptions import CorruptRecord, NotFound, PartialUploadFailure
from apps.builds.filesystem import FilesystemBuildRepository
from apps.builds.schema import Platform


class FailingStream(io.RawIOBase):
    def readable(self):
        return True

    def readinto(self, buffer):
        raise OSError('connection reset while reading upload')


def _save_all(repo, records):
    async def _go():
        for record in records:
            await repo.save_upload(record, io.BytesIO(b'binary'))

    asyncio.run(_go())


def test_layout_on_disk(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    record = make_record('u1', platform=Platform.ANDROID)
    _save_all(repo, [record])

    assert (tmp_path / 'u1' / 'build_info.json').is_file()
    assert (tmp_path / 'u1' / 'app.apk').read_bytes() == b'binary'
    index = json.loads((tmp_path / '_indexes' / 'by_bundle_id' / 'com.example.app.json').read_text())
    assert [e['upload_id'] for e in index] == ['u1']
    info = json.loads((tmp_path / 'u1' / 'build_info.json').read_text())
    assert info['bundle_id'] == 'com.example.app'
    assert info['platform'] == 'android'


def test_index_is_sorted_newest_first(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('old', minutes=1), make_record('new', minutes=9), make_record('mid', minutes=5)])

    index = json.loads(repo.index_path('com.example.app').read_text())
    assert [e['upload_id'] for e in index] == ['new', 'mid', 'old']


def test_no_temporary_files_left_behind(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1'), make_record('u2', minutes=1)])

    leftovers = [p for p in tmp_path.rglob('*') if p.name.endswith('.tmp')]
    assert leftovers == []


def test_corrupt_metadata_is_skipped_in_list_versions(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1', minutes=0), make_record('u2', minutes=1)])
    (tmp_path / 'u1' / 'build_info.json').write_text('{not json')

    versions = asyncio.run(repo.list_versions('com.example.app'))
    assert [b.upload_id for b in versions] == ['u2']


def test_orphan_index_entry_is_skipped(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1', minutes=0), make_record('u2', minutes=1)])
    (tmp_path / 'u2' / 'build_info.json').unlink()

    versions = asyncio.run(repo.list_versions('com.example.app'))
    latest = asyncio.run(repo.latest_version('com.example.app'))
    assert [b.upload_id for b in versions] == ['u1']
    assert latest.upload_id == 'u1'


def test_corrupt_latest_metadata_surfaces_in_point_lookup(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1', minutes=0), make_record('u2', minutes=1)])
    (tmp_path / 'u2' / 'build_info.json').write_text('[]')

    with pytest.raises(CorruptRecord):
        asyncio.run(repo.latest_version('com.example.app'))


def test_list_latest_per_app_skips_broken_bundle(tmp_path, make_record, caplog):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [
        make_record('a1', bundle_id='com.example.a'),
        make_record('b1', bundle_id='com.example.b'),
    ])
    repo.index_path('com.example.a').write_text('garbage')

    with caplog.at_level('WARNING'):
        latest = asyncio.run(repo.list_latest_per_app())

    assert [b.upload_id for b in latest] == ['b1']
    assert 'com.example.a' in caplog.text


def test_corrupt_index_is_reported(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1')])
    repo.index_path('com.example.app').write_text('{"upload_id": 1}')

    with pytest.raises(CorruptRecord):
        asyncio.run(repo.list_versions('com.example.app'))


def test_empty_index_file_means_not_found(tmp_path):
    repo = FilesystemBuildRepository(str(tmp_path))
    repo.index_path('com.example.app').write_text('')

    with pytest.raises(NotFound):
        asyncio.run(repo.latest_version('com.example.app'))


def test_unsafe_bundle_id_is_not_found(tmp_path):
    repo = FilesystemBuildRepository(str(tmp_path))

    with pytest.raises(NotFound):
        asyncio.run(repo.list_versions('../etc'))


def test_binary_failure_leaves_invisible_orphan(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    record = make_record('u1')

    with pytest.raises(PartialUploadFailure):
        asyncio.run(repo.save_upload(record, FailingStream()))

    assert (tmp_path / 'u1' / 'build_info.json').is_file()
    assert not (tmp_path / 'u1' / 'app.apk').exists()
    with pytest.raises(NotFound):
        asyncio.run(repo.list_versions('com.example.app'))


def test_index_failure_is_reported_as_partial_upload(tmp_path, make_record, monkeypatch):
    repo = FilesystemBuildRepository(str(tmp_path))

    def broken_write(path, data):
        raise OSError('disk full')

    monkeypatch.setattr(fs, 'write_bytes_atomic', broken_write)

    with pytest.raises(PartialUploadFailure):
        asyncio.run(repo.save_upload(make_record('u1'), io.BytesIO(b'apk')))

    assert (tmp_path / 'u1' / 'app.apk').read_bytes() == b'apk'
    with pytest.raises(NotFound):
        asyncio.run(repo.latest_version('com.example.app'))


def test_get_build_prefers_newest_duplicate_version(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('first', minutes=0), make_record('again', minutes=3)])

    build = asyncio.run(repo.get_build('com.example.app', '1.0.0', '1'))
    assert build.upload_id == 'again'


def test_binary_path_missing_is_not_found(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    record = make_record('u1')
    _save_all(repo, [record])
    (tmp_path / 'u1' / 'app.apk').unlink()

    with pytest.raises(NotFound):
        asyncio.run(repo.binary_path(record))


def _append_raw_index_entry(repo, bundle_id, entry):
    path = repo.index_path(bundle_id)
    index = json.loads(path.read_text())
    index.append(entry)
    path.write_text(json.dumps(index))


def test_bad_index_entry_does_not_hide_siblings(tmp_path, make_record, caplog):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1', minutes=0), make_record('u2', minutes=1)])
    _append_raw_index_entry(repo, 'com.example.app', {'upload_id': 'u3', 'created_at': 'not-a-date'})

    with caplog.at_level('WARNING'):
        versions = asyncio.run(repo.list_versions('com.example.app'))
        latest = asyncio.run(repo.latest_version('com.example.app'))
        apps = asyncio.run(repo.list_latest_per_app())

    assert [b.upload_id for b in versions] == ['u2', 'u1']
    assert latest.upload_id == 'u2'
    assert [b.upload_id for b in apps] == ['u2']
    assert 'com.example.app' in caplog.text


def test_upload_after_bad_index_entry_rewrites_index(tmp_path, make_record):
    repo = FilesystemBuildRepository(str(tmp_path))
    _save_all(repo, [make_record('u1', minutes=0)])
    _append_raw_index_entry(repo, 'com.example.app', {'upload_id': 'u3', 'created_at': 'not-a-date'})

    _save_all(repo, [make_record('u4', minutes=5)])

    index = json.loads(repo.index_path('com.example.app').read_text())
    assert [e['upload_id'] for e in index] == ['u4', 'u1']
    versions = asyncio.run(repo.list_versions('com.example.app'))
    assert [b.upload_id for b in versions] == ['u4', 'u1']
