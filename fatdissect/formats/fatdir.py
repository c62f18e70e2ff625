'''
FAT12/16/32 directory records.

Each directory region is a sequence of 32 byte records. A record is either a
short (8.3) entry describing a file or subdirectory, or a fragment of the
long name of the short entry that follows it.
'''
import logging
import datetime
import collections

import vstruct2.types as v_types

from fatdissect.errors import InvalidImage


logger = logging.getLogger(__name__)


# size of a record in the directory data
DIR_ENTRY_SIZE = 0x20

# offset of the attribute byte within a record
DIR_ATTR_OFFSET = 0x0B

# the number of bytes reserved for 8.3 filenames
DIR_NAME_SIZE = 11

# first name byte values with special meaning
DIR_END_MARKER = 0x00
DIR_DELETED_MARKER = 0xE5
# a leading 0xE5 character is stored as 0x05 so it doesn't read as deleted
DIR_KANJI_E5 = 0x05

# flag for tagging the last (first written) LONG_NAME fragment
LAST_LONG_ENTRY = 0x40
LONG_ENTRY_ORD_MASK = 0x3F

# short names are in the OEM code page
SHORT_NAME_CODEC = 'cp437'

# packed dates count years from here
FAT_EPOCH_YEAR = 1980


# directory entry attributes. bit flags.
DIRECTORY_ATTRIBUTES = v_types.venum()
DIRECTORY_ATTRIBUTES.ATTR_READ_ONLY = 0x1
DIRECTORY_ATTRIBUTES.ATTR_HIDDEN = 0x2
DIRECTORY_ATTRIBUTES.ATTR_SYSTEM = 0x4
DIRECTORY_ATTRIBUTES.ATTR_VOLUME_ID = 0x8
DIRECTORY_ATTRIBUTES.ATTR_DIRECTORY = 0x10
DIRECTORY_ATTRIBUTES.ATTR_ARCHIVE = 0x20
DIRECTORY_ATTRIBUTES.ATTR_DEVICE = 0x40
DIRECTORY_ATTRIBUTES.ATTR_RESERVED = 0x80
DIRECTORY_ATTRIBUTES.ATTR_LONG_NAME = DIRECTORY_ATTRIBUTES.ATTR_READ_ONLY | \
        DIRECTORY_ATTRIBUTES.ATTR_HIDDEN | \
        DIRECTORY_ATTRIBUTES.ATTR_SYSTEM | \
        DIRECTORY_ATTRIBUTES.ATTR_VOLUME_ID

ATTRIBUTE_NAMES = (
    (DIRECTORY_ATTRIBUTES.ATTR_READ_ONLY, 'read_only'),
    (DIRECTORY_ATTRIBUTES.ATTR_HIDDEN, 'hidden'),
    (DIRECTORY_ATTRIBUTES.ATTR_SYSTEM, 'system'),
    (DIRECTORY_ATTRIBUTES.ATTR_VOLUME_ID, 'volume_label'),
    (DIRECTORY_ATTRIBUTES.ATTR_DIRECTORY, 'subdirectory'),
    (DIRECTORY_ATTRIBUTES.ATTR_ARCHIVE, 'archive'),
    (DIRECTORY_ATTRIBUTES.ATTR_DEVICE, 'device'),
    (DIRECTORY_ATTRIBUTES.ATTR_RESERVED, 'reserved'),
)


def isLongNameAttr(attr):
    '''
    is this attribute byte the long name marker?
    the marker is a reserved combination, so this is an exact match and
     not a test of the individual bits.

    type attr: int
    rtype: bool
    '''
    return attr == DIRECTORY_ATTRIBUTES.ATTR_LONG_NAME


def getAttributeNames(attr):
    '''
    get the names of the flags set in an attribute byte.

    type attr: int
    rtype: frozenset
    '''
    return frozenset(name for mask, name in ATTRIBUTE_NAMES if attr & mask)


class FatDate(collections.namedtuple('FatDate', 'year month day')):
    '''
    a packed date, decoded but not validated.
    '''
    __slots__ = ()

    def isValid(self):
        return 1 <= self.month <= 12 and 1 <= self.day <= 31

    def toDate(self):
        '''
        rtype: datetime.date
        raises ValueError: the fields are outside the calendar
        '''
        return datetime.date(self.year, self.month, self.day)

    def __str__(self):
        return '%04d-%02d-%02d' % self


class FatTimestamp(collections.namedtuple('FatTimestamp', 'year month day hours minutes seconds milliseconds')):
    '''
    a packed date and time, decoded but not validated.
    '''
    __slots__ = ()

    @property
    def date(self):
        return FatDate(self.year, self.month, self.day)

    def isValid(self):
        if not self.date.isValid():
            return False
        return self.hours < 24 and self.minutes < 60 and self.seconds < 60

    def toDatetime(self):
        '''
        rtype: datetime.datetime
        raises ValueError: the fields are outside the calendar
        '''
        return datetime.datetime(self.year, self.month, self.day,
                self.hours, self.minutes, self.seconds, self.milliseconds * 1000)

    def __str__(self):
        return '%04d-%02d-%02d %02d:%02d:%02d.%03d' % self


def parseDate(word):
    '''
    decode a packed date.

      bits 0-4: day, bits 5-8: month, bits 9-15: years since 1980

    type word: int
    rtype: FatDate
    '''
    return FatDate((word >> 9) + FAT_EPOCH_YEAR, (word >> 5) & 0x0F, word & 0x1F)


def parseTime(word, tenths=0):
    '''
    decode a packed time, with the optional 10ms unit byte of create times.

      bits 0-4: seconds / 2, bits 5-10: minutes, bits 11-15: hours

    type word: int
    type tenths: int
    rtype: Tuple[int, int, int, int]
    '''
    seconds = (word & 0x1F) * 2 + tenths // 100
    milliseconds = (tenths % 100) * 10
    return (word >> 11, (word >> 5) & 0x3F, seconds, milliseconds)


def parseTimestamp(date_word, time_word, tenths=0):
    '''
    rtype: FatTimestamp
    '''
    return FatTimestamp(*(parseDate(date_word) + parseTime(time_word, tenths)))


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
class SHORT_DIRECTORY_ENTRY(v_types.VStruct):
    '''
    a file, subdirectory or volume label, named with the 8.3 scheme.
    '''
    def __init__(self):
        super(SHORT_DIRECTORY_ENTRY, self).__init__()
        # 8 bytes of OEM characters for the basename, 3 bytes for the extension.
        # period is implicit. left-justified, space padded.
        self.DIR_Name = v_types.vbytes(size=8)
        self.DIR_Ext = v_types.vbytes(size=3)
        self.DIR_Attr = v_types.uint8(enum=DIRECTORY_ATTRIBUTES)
        self.DIR_NTRes = v_types.uint8()
        self.DIR_CrtTimeTenth = v_types.uint8()
        self.DIR_CrtTime = v_types.uint16()
        self.DIR_CrtDate = v_types.uint16()
        self.DIR_LstAccDate = v_types.uint16()
        # zero on FAT12 and FAT16
        self.DIR_FstClusHI = v_types.uint16()
        self.DIR_WrtTime = v_types.uint16()
        self.DIR_WrtDate = v_types.uint16()
        self.DIR_FstClusLO = v_types.uint16()
        self.DIR_FileSize = v_types.uint32()

    is_long_name = False

    @property
    def is_end(self):
        '''
        does this record mark the end of the directory?
        '''
        return self.DIR_Name[0] == DIR_END_MARKER

    @property
    def is_deleted(self):
        return self.DIR_Name[0] == DIR_DELETED_MARKER

    @property
    def is_directory(self):
        return bool(self.DIR_Attr & DIRECTORY_ATTRIBUTES.ATTR_DIRECTORY)

    @property
    def is_volume_label(self):
        return bool(self.DIR_Attr & DIRECTORY_ATTRIBUTES.ATTR_VOLUME_ID)

    @property
    def name_bytes(self):
        '''
        the raw 11 byte name and extension, as covered by the long name checksum.
        '''
        return self.DIR_Name + self.DIR_Ext

    @property
    def short_name(self):
        '''
        reconstruct the 8.3 name for this directory entry.
        '''
        name = self.DIR_Name
        if name[0] == DIR_KANJI_E5:
            name = bytes([DIR_DELETED_MARKER]) + name[1:]

        name = name.rstrip(b' ').decode(SHORT_NAME_CODEC)
        ext = self.DIR_Ext.rstrip(b' ').decode(SHORT_NAME_CODEC)
        if len(ext) > 0:
            return name + '.' + ext
        return name

    @property
    def is_dot_entry(self):
        '''
        is this the self (.) or parent (..) reference of a subdirectory?
        '''
        return self.is_directory and self.short_name in ('.', '..')

    @property
    def first_cluster(self):
        '''
        get the cluster number of the data for this entry.

        rtype: int
        '''
        return (self.DIR_FstClusHI << 16) | self.DIR_FstClusLO

    @property
    def attribute_names(self):
        return getAttributeNames(self.DIR_Attr)

    @property
    def created(self):
        return parseTimestamp(self.DIR_CrtDate, self.DIR_CrtTime, self.DIR_CrtTimeTenth)

    @property
    def accessed(self):
        return parseDate(self.DIR_LstAccDate)

    @property
    def modified(self):
        return parseTimestamp(self.DIR_WrtDate, self.DIR_WrtTime)

    def __str__(self):
        if self.is_end:
            return 'SHORT_DIRECTORY_ENTRY (end)'
        elif self.is_deleted:
            return 'SHORT_DIRECTORY_ENTRY (deleted)'
        else:
            return 'SHORT_DIRECTORY_ENTRY (name: %s)' % (self.short_name)


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
class LONG_DIRECTORY_ENTRY(v_types.VStruct):
    '''
    implements the FAT hack for supporting long names.
    reuses the layout of a short entry to store 13 UTF-16LE code units
      of a long name.
    it *must* have the LDIR_Attr equal to ATTR_LONG_NAME.
    '''
    def __init__(self):
        super(LONG_DIRECTORY_ENTRY, self).__init__()
        self.LDIR_Ord = v_types.uint8()
        self.LDIR_Name1 = v_types.vbytes(size=10)
        self.LDIR_Attr = v_types.uint8(enum=DIRECTORY_ATTRIBUTES)
        self.LDIR_Type = v_types.uint8()
        self.LDIR_Chksum = v_types.uint8()
        self.LDIR_Name2 = v_types.vbytes(size=12)
        self.LDIR_FstClusLO = v_types.uint16()
        self.LDIR_Name3 = v_types.vbytes(size=4)

    is_long_name = True

    @property
    def is_end(self):
        return self.LDIR_Ord == DIR_END_MARKER

    @property
    def is_deleted(self):
        return self.LDIR_Ord == DIR_DELETED_MARKER

    @property
    def ordinal(self):
        '''
        the 1-based position of this fragment within the long name.
        '''
        return self.LDIR_Ord & LONG_ENTRY_ORD_MASK

    @property
    def is_last(self):
        return bool(self.LDIR_Ord & LAST_LONG_ENTRY)

    @property
    def checksum(self):
        return self.LDIR_Chksum

    @property
    def name_fragment(self):
        '''
        the part of the long name stored in this long directory entry.
        '''
        return self.LDIR_Name1 + self.LDIR_Name2 + self.LDIR_Name3

    def __str__(self):
        if self.is_end:
            return 'LONG_DIRECTORY_ENTRY (end)'
        elif self.is_deleted:
            return 'LONG_DIRECTORY_ENTRY (deleted)'
        else:
            return 'LONG_DIRECTORY_ENTRY (ordinal: %d)' % (self.ordinal)


def parseRecord(image, offset):
    '''
    decode the directory record at the given byte offset of the image.
    the attribute byte decides which layout applies.

    type image: ImageReader
    type offset: int

    rtype: Union[SHORT_DIRECTORY_ENTRY, LONG_DIRECTORY_ENTRY]
    '''
    if image is None:
        raise InvalidImage('cannot read a null image')

    attr = image.readAtOffset(offset + DIR_ATTR_OFFSET)
    byts = image.readRange(offset, DIR_ENTRY_SIZE)
    if len(byts) != DIR_ENTRY_SIZE:
        raise InvalidImage('truncated directory record at 0x%x' % (offset))

    if isLongNameAttr(attr):
        rec = LONG_DIRECTORY_ENTRY()
    else:
        rec = SHORT_DIRECTORY_ENTRY()

    rec.vsParse(byts)
    logger.debug('record: off: %x attr: %x type: %s', offset, attr, rec.__class__.__name__)
    return rec
