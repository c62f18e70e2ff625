'''
Exceptions raised (or collected as warnings) while decoding FAT directories.
'''


class FatDirectoryError(Exception):
    pass


class InvalidImage(FatDirectoryError):
    '''
    the byte source is absent, or cannot supply the requested bytes.
    aborts the current build.
    '''
    pass


class OutOfRange(InvalidImage):
    '''
    a read was requested past the bounds of the image.
    '''
    pass


class InvalidTimestamp(FatDirectoryError):
    '''
    a packed date or time decoded to values outside the calendar.
    collected as a warning on the entry.
    '''
    pass


class ChecksumMismatch(FatDirectoryError):
    '''
    a long name fragment does not carry the checksum of the 8.3 name it precedes.
    collected as a warning on the entry; the long name is still used.
    '''
    pass


class CorruptDirectoryStructure(FatDirectoryError):
    '''
    the directory data is inconsistent, but decoding can continue.
    collected as a warning on the entry.
    '''
    pass


class CorruptFileSystemError(FatDirectoryError):
    '''
    an error occured while parsing the boot sector or allocation table.
    '''
    pass
