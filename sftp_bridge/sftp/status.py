"""SFTP status codes and open flags as used on the wire (draft-ietf-secsh-filexfer-02)."""

from enum import IntEnum, IntFlag

import paramiko


class SFTPStatus(IntEnum):
    OK = paramiko.SFTP_OK
    EOF = paramiko.SFTP_EOF
    NO_SUCH_FILE = paramiko.SFTP_NO_SUCH_FILE
    PERMISSION_DENIED = paramiko.SFTP_PERMISSION_DENIED
    FAILURE = paramiko.SFTP_FAILURE


class OpenFlags(IntFlag):
    READ = 0x01
    WRITE = 0x02
    APPEND = 0x04
    CREATE = 0x08
    TRUNCATE = 0x10
    EXCLUSIVE = 0x20

    @property
    def is_write(self) -> bool:
        return bool(self & (OpenFlags.WRITE | OpenFlags.APPEND))
