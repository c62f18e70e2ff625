'''
Random offset reads over a fixed size binary image.
'''
import io
import os
import logging
import threading

from fatdissect.errors import InvalidImage, OutOfRange


logger = logging.getLogger(__name__)


class ImageReader:
    '''
    read-only byte source over a seekable file object.
    offsets are relative to `off`, so a reader may expose a single partition
     of a larger disk image.

    Example:

        with open('floppy.img', 'rb') as fd:
            image = ImageReader(fd)
            attr = image.readAtOffset(0x2600 + 0x0B)

    '''
    def __init__(self, fd, off=0, size=None):
        '''
        param fd: the backing file object, opened for binary reading.
        param off: the offset of the image within `fd`.
        param size: the size of the image in bytes. defaults to the remainder of `fd`.
        '''
        if fd is None:
            raise InvalidImage('cannot read a null image')

        self.fd = fd
        self.off = off
        # seek+read pairs must not interleave across threads
        self._lock = threading.Lock()

        if size is None:
            with self._lock:
                end = fd.seek(0, os.SEEK_END)
            size = end - off

        if size <= 0:
            raise InvalidImage('cannot read an empty image')

        self.size = size
        logger.debug('image: off: %x size: %x', off, size)

    @classmethod
    def fromBytes(cls, byts):
        '''
        construct a reader over an in-memory image.

        type byts: bytes
        rtype: ImageReader
        '''
        if byts is None:
            raise InvalidImage('cannot read a null image')
        return cls(io.BytesIO(bytes(byts)))

    def readRange(self, offset, length):
        '''
        read exactly `length` bytes starting at `offset`.

        type offset: int
        type length: int
        rtype: bytes
        '''
        if offset < 0 or length < 0 or offset + length > self.size:
            raise OutOfRange('read of %d bytes at 0x%x exceeds image size 0x%x' % (length, offset, self.size))

        with self._lock:
            self.fd.seek(self.off + offset)
            byts = self.fd.read(length)

        if len(byts) != length:
            raise InvalidImage('short read at 0x%x: wanted %d, got %d' % (offset, length, len(byts)))
        return byts

    def readAtOffset(self, offset):
        '''
        read the single byte at `offset`.

        rtype: int
        '''
        return self.readRange(offset, 1)[0]

    def __len__(self):
        return self.size
