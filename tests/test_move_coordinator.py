"""
Tests for crash-safe file moves.

Covers the normal rename path, the copy/verify/delete fallback, the
verification gates and recovery of moves interrupted at each step.

Run with: python -m unittest tests/test_move_coordinator.py
"""

import hashlib
import os
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

TEST_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(TEST_DIR)
sys.path.insert(0, PROJECT_ROOT)

from mediavault.app import create_app  # noqa: E402
from mediavault.database import db  # noqa: E402
from mediavault.services.storage import (  # noqa: E402
    AssetInfo,
    AssetPathType,
    CrossDeviceError,
    FileMoveRepository,
    MoveCoordinator,
    MoveRequest,
    MoveState,
    PersonPathType,
    StorageFolder,
    StorageLayout,
    StorageService,
    StorageSettings,
    TransientIOError,
)
from tests.test_storage_gateway_remote import HOST, ROOT, make_remote_storage  # noqa: E402
from tests.s3_fakes import FakeS3Client  # noqa: E402

CONTENT = b'original image bytes'
CONTENT_SHA1 = hashlib.sha1(CONTENT).digest()
LOGGER = 'mediavault.services.storage.mover'


class MoveTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = os.path.join(self._tmp.name, 'data')
        os.makedirs(self.root)
        self.settings = StorageSettings(media_location=self.root, staging_dir=os.path.join(self._tmp.name, 'staging'))

        self.app = create_app(self.settings, database_uri='sqlite://', setup_logging=False)
        self.ctx = self.app.app_context()
        self.ctx.push()

        self.storage = StorageService(self.settings)
        self.layout = StorageLayout(self.root)
        self.moves = FileMoveRepository()
        self.save_path = MagicMock()
        self.coordinator = MoveCoordinator(self.storage, self.layout, self.moves, self.save_path)

        self.old_path = self.write('upload/u1/ab/cd/abcd.jpg')
        self.new_path = os.path.join(self.root, 'library', 'u1', '2023', 'abcd.jpg')

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()
        self._tmp.cleanup()

    def write(self, rel, data=CONTENT):
        full = os.path.join(self.root, rel)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, 'wb') as f:
            f.write(data)
        return full

    def read(self, path):
        with open(path, 'rb') as f:
            return f.read()

    def request(self, path_type=AssetPathType.ORIGINAL, asset_info='default', old_path=None, new_path=None):
        if asset_info == 'default':
            asset_info = AssetInfo(size_in_bytes=len(CONTENT), checksum=CONTENT_SHA1)
        return MoveRequest(
            entity_id='asset-1',
            path_type=path_type,
            old_path=old_path or self.old_path,
            new_path=new_path or self.new_path,
            asset_info=asset_info,
        )

    def pending(self):
        return self.moves.get_by_entity('asset-1', AssetPathType.ORIGINAL)


class TestMoveFile(MoveTestCase):

    def test_rename_moves_file_and_commits_path(self):
        result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(result.path, self.new_path)
        self.assertTrue(result.succeeded)
        self.assertFalse(os.path.exists(self.old_path))
        self.assertEqual(self.read(self.new_path), CONTENT)
        self.save_path.assert_called_once_with(AssetPathType.ORIGINAL, 'asset-1', self.new_path)
        self.assertIsNone(self.pending())

    def test_same_or_missing_old_path_is_skipped(self):
        same = self.coordinator.move_file(self.request(new_path=self.old_path))
        self.assertEqual(same.state, MoveState.SKIPPED)

        missing = self.coordinator.move_file(MoveRequest('asset-1', AssetPathType.PREVIEW, None, self.new_path))
        self.assertEqual(missing.state, MoveState.SKIPPED)

        self.save_path.assert_not_called()
        self.assertTrue(os.path.exists(self.old_path))

    def test_second_run_is_a_no_op(self):
        self.coordinator.move_file(self.request())
        again = self.coordinator.move_file(self.request(old_path=self.new_path))
        self.assertEqual(again.state, MoveState.SKIPPED)
        self.assertEqual(self.save_path.call_count, 1)
        self.assertEqual(self.read(self.new_path), CONTENT)

    def test_original_without_asset_info_aborts_before_recording(self):
        result = self.coordinator.move_file(self.request(asset_info=None))

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertEqual(result.path, self.old_path)
        self.assertFalse(result.succeeded)
        self.assertIsNone(self.pending())
        self.assertTrue(os.path.exists(self.old_path))
        self.save_path.assert_not_called()

    def test_rename_failure_aborts_and_keeps_intent(self):
        with patch.object(self.storage.local, 'rename', side_effect=TransientIOError('disk error', self.old_path)):
            result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertTrue(os.path.exists(self.old_path))
        self.assertFalse(os.path.exists(self.new_path))
        self.assertIsNotNone(self.pending())
        self.save_path.assert_not_called()

    def test_save_path_failure_propagates_and_keeps_intent(self):
        self.save_path.side_effect = RuntimeError('database down')
        with self.assertRaises(RuntimeError):
            self.coordinator.move_file(self.request())
        self.assertIsNotNone(self.pending())

    def test_intent_cleanup_failure_still_commits(self):
        with patch.object(self.moves, 'delete', side_effect=RuntimeError('database down')):
            result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.COMMITTED)
        self.assertTrue(result.succeeded)
        self.assertEqual(self.read(self.new_path), CONTENT)
        self.assertIsNotNone(self.pending())

        # The leftover intent is reconciled by the next attempt
        retry = self.coordinator.move_file(self.request())
        self.assertEqual(retry.state, MoveState.CLEANED)
        self.assertIsNone(self.pending())
        self.assertEqual(self.read(self.new_path), CONTENT)


class TestCrossDeviceFallback(MoveTestCase):

    def setUp(self):
        super().setUp()
        self.mtime = datetime(2020, 7, 1, 10, 30, tzinfo=timezone.utc)
        os.utime(self.old_path, (self.mtime.timestamp(), self.mtime.timestamp()))
        patcher = patch.object(self.storage.local, 'rename',
                               side_effect=CrossDeviceError('Cannot rename across devices', self.old_path))
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_copy_verify_delete(self):
        result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertFalse(os.path.exists(self.old_path))
        self.assertEqual(self.read(self.new_path), CONTENT)
        self.assertAlmostEqual(os.stat(self.new_path).st_mtime, self.mtime.timestamp(), delta=0.01)
        self.assertIsNone(self.pending())

    def test_size_mismatch_aborts_and_keeps_source(self):
        info = AssetInfo(size_in_bytes=len(CONTENT) + 1, checksum=CONTENT_SHA1)
        with self.assertLogs(LOGGER, level='WARNING'):
            result = self.coordinator.move_file(self.request(asset_info=info))

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertEqual(self.read(self.old_path), CONTENT)
        self.assertFalse(os.path.exists(self.new_path))
        self.assertIsNotNone(self.pending())
        self.save_path.assert_not_called()

    def test_checksum_mismatch_aborts_and_keeps_source(self):
        info = AssetInfo(size_in_bytes=len(CONTENT), checksum=hashlib.sha1(b'something else').digest())
        result = self.coordinator.move_file(self.request(asset_info=info))

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertIn('checksum', result.reason)
        self.assertEqual(self.read(self.old_path), CONTENT)
        self.assertFalse(os.path.exists(self.new_path))

    def test_checksum_ignored_when_verification_disabled(self):
        coordinator = MoveCoordinator(self.storage, self.layout, self.moves, self.save_path,
                                      hash_verification_enabled=False)
        info = AssetInfo(size_in_bytes=len(CONTENT), checksum=hashlib.sha1(b'something else').digest())
        result = coordinator.move_file(self.request(asset_info=info))
        self.assertEqual(result.state, MoveState.CLEANED)

    def test_derived_file_size_is_checked_against_source(self):
        result = self.coordinator.move_file(self.request(path_type=AssetPathType.PREVIEW, asset_info=None))
        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(self.read(self.new_path), CONTENT)

    def test_failed_copy_removes_partial_destination(self):
        def partial_copy(source, target):
            with open(target, 'wb') as f:
                f.write(b'part')
            raise TransientIOError('No space left on device', source)

        with patch.object(self.storage.local, 'copy_file', side_effect=partial_copy):
            result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertTrue(os.path.exists(self.old_path))
        self.assertFalse(os.path.exists(self.new_path))


class TestRecovery(MoveTestCase):

    def record_intent(self):
        return self.moves.create('asset-1', AssetPathType.ORIGINAL, self.old_path, self.new_path)

    def test_file_still_at_old_location(self):
        self.record_intent()
        result = self.coordinator.move_file(self.request())
        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(self.read(self.new_path), CONTENT)
        self.assertFalse(os.path.exists(self.old_path))
        self.assertIsNone(self.pending())

    def test_file_already_at_new_location(self):
        self.record_intent()
        os.makedirs(os.path.dirname(self.new_path))
        os.rename(self.old_path, self.new_path)

        with patch.object(self.storage, 'rename') as rename, patch.object(self.storage, 'copy_file') as copy_file:
            result = self.coordinator.move_file(self.request())

        rename.assert_not_called()
        copy_file.assert_not_called()
        self.assertEqual(result.state, MoveState.CLEANED)
        self.save_path.assert_called_once_with(AssetPathType.ORIGINAL, 'asset-1', self.new_path)
        self.assertIsNone(self.pending())

    def test_unverifiable_file_at_new_location_is_left_alone(self):
        self.record_intent()
        os.remove(self.old_path)
        self.write(os.path.relpath(self.new_path, self.root), b'truncated')

        with self.assertLogs(LOGGER, level='ERROR'):
            result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertEqual(self.read(self.new_path), b'truncated')
        self.assertIsNotNone(self.pending())
        self.save_path.assert_not_called()

    def test_file_missing_at_both_locations(self):
        self.record_intent()
        os.remove(self.old_path)

        with self.assertLogs(LOGGER, level='CRITICAL'):
            result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertIsNotNone(self.pending())
        self.save_path.assert_not_called()

    def test_file_at_both_locations_continues_from_old(self):
        self.record_intent()
        self.write(os.path.relpath(self.new_path, self.root), b'partial')

        result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(self.read(self.new_path), CONTENT)
        self.assertFalse(os.path.exists(self.old_path))

    def test_changed_destination_is_recorded(self):
        self.record_intent()
        other = os.path.join(self.root, 'library', 'u1', '2024', 'abcd.jpg')
        result = self.coordinator.move_file(self.request(new_path=other))
        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(self.read(other), CONTENT)
        self.assertFalse(os.path.exists(self.new_path))


class TestConvenienceMovers(MoveTestCase):

    def test_move_asset_image(self):
        old = self.write('thumbs/legacy/a1b2c3d4-preview.jpeg')
        asset = SimpleNamespace(id='a1b2c3d4', owner_id='u1',
                                files=[SimpleNamespace(type=AssetPathType.PREVIEW, path=old)])

        result = self.coordinator.move_asset_image(asset, AssetPathType.PREVIEW, 'jpeg')

        expected = os.path.join(self.root, 'thumbs', 'u1', 'a1', 'b2', 'a1b2c3d4-preview.jpeg')
        self.assertEqual(result.state, MoveState.CLEANED)
        self.assertEqual(result.path, expected)
        self.assertTrue(os.path.exists(expected))
        self.save_path.assert_called_once_with(AssetPathType.PREVIEW, 'a1b2c3d4', expected)

    def test_move_asset_image_without_existing_file(self):
        asset = SimpleNamespace(id='a1b2c3d4', owner_id='u1', files=[])
        result = self.coordinator.move_asset_image(asset, AssetPathType.THUMBNAIL, 'webp')
        self.assertEqual(result.state, MoveState.SKIPPED)

    def test_move_asset_video(self):
        old = self.write('encoded-video/old/a1b2c3d4.mp4')
        asset = SimpleNamespace(id='a1b2c3d4', owner_id='u1', encoded_video_path=old)

        result = self.coordinator.move_asset_video(asset)

        expected = os.path.join(self.root, 'encoded-video', 'u1', 'a1', 'b2', 'a1b2c3d4.mp4')
        self.assertEqual(result.path, expected)
        self.assertTrue(os.path.exists(expected))

    def test_move_person_file(self):
        old = self.write('thumbs/old/face.jpeg')
        person = SimpleNamespace(id='p9f8e7', owner_id='u1', thumbnail_path=old)

        result = self.coordinator.move_person_file(person, PersonPathType.FACE)

        expected = os.path.join(self.root, 'thumbs', 'u1', 'p9', 'f8', 'p9f8e7.jpeg')
        self.assertEqual(result.path, expected)
        self.save_path.assert_called_once_with(PersonPathType.FACE, 'p9f8e7', expected)

    def test_remove_empty_dirs(self):
        self.coordinator.move_asset_video(SimpleNamespace(
            id='a1b2c3d4', owner_id='u1', encoded_video_path=self.write('encoded-video/old/x/a1b2c3d4.mp4')))
        self.coordinator.remove_empty_dirs(StorageFolder.ENCODED_VIDEO)
        self.assertFalse(os.path.exists(os.path.join(self.root, 'encoded-video', 'old')))
        self.assertTrue(os.path.isdir(os.path.join(self.root, 'encoded-video', 'u1')))


class TestRemoteMoves(MoveTestCase):

    def setUp(self):
        super().setUp()
        self.client = FakeS3Client()
        self.storage = make_remote_storage(self.settings.staging_dir, self.client)
        self.layout = StorageLayout(ROOT)
        self.coordinator = MoveCoordinator(self.storage, self.layout, self.moves, self.save_path)
        self.old_path = f"{ROOT}/upload/u1/ab/cd/abcd.jpg"
        self.new_path = f"{ROOT}/library/u1/2023/abcd.jpg"
        self.storage.create_file(self.old_path, CONTENT)

    def test_remote_move_is_copy_then_delete(self):
        self.client.calls.clear()
        result = self.coordinator.move_file(self.request())

        self.assertEqual(result.state, MoveState.CLEANED)
        ops = self.client.operations()
        self.assertLess(ops.index('copy_object'), ops.index('delete_object'))
        self.assertFalse(self.storage.exists(self.old_path))
        self.assertEqual(self.storage.read_file(self.new_path), CONTENT)
        self.assertIsNone(self.pending())

    def test_move_to_other_bucket_aborts(self):
        result = self.coordinator.move_file(self.request(new_path=f"{HOST}/archive/abcd.jpg"))
        self.assertEqual(result.state, MoveState.ABORTED)
        self.assertTrue(self.storage.exists(self.old_path))
        self.save_path.assert_not_called()


if __name__ == '__main__':
    unittest.main()
