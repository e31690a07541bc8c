import unittest

from filestore_s3.events import EventReceiver, FileRef, FolderChange, Mail, MailboxSize


class TestEventReceiver(unittest.TestCase):
    def setUp(self) -> None:
        self.events = []
        self.receiver = EventReceiver(self.events.append)

    def test_files_added(self) -> None:
        self.assertTrue(self.receiver.dispatch("FilesAdded", [[{"id": "F1", "source": "web"}]]))
        self.assertEqual(len(self.events), 1)
        self.assertEqual(self.events[0].kind, "files_added")
        self.assertEqual(self.events[0].items, (FileRef(id="F1", source="web"),))

    def test_folder_change_without_arguments(self) -> None:
        self.receiver.dispatch("FolderChange")
        self.assertEqual(self.events[0].kind, "folder_changed")
        self.assertEqual(self.events[0].items, ())

    def test_fs_folder_change(self) -> None:
        self.receiver.dispatch(
            "FsFolderChange", [{"action": 2, "parentFolder": "/", "folder": "docs"}]
        )
        self.assertEqual(self.events[0].items, (FolderChange(2, "/", "docs"),))

    def test_mail_and_mailbox(self) -> None:
        self.receiver.dispatch("MailboxSizeUpdate", [[{"size": 10, "maxSize": 100}]])
        self.receiver.dispatch("MailAdded", [[{
            "uid": 4, "mid": 9, "ownerEmailAddress": "a@example.test", "folder": "INBOX", "isNew": True,
        }]])
        self.assertEqual(self.events[0].items, (MailboxSize(10, 100),))
        self.assertEqual(self.events[1].items, (Mail(4, 9, "a@example.test", "INBOX", True),))

    def test_unknown_target(self) -> None:
        self.assertFalse(self.receiver.dispatch("SomethingElse", []))
        self.assertEqual(self.events, [])

    def test_no_callback_is_noop(self) -> None:
        receiver = EventReceiver()
        self.assertTrue(receiver.dispatch("FilesDeleted", [[{"id": "F1"}]]))


if __name__ == "__main__":
    unittest.main()
