'''
Directory trees of FAT12/16/32 file systems.

Folds long name fragments into the short entries they describe, and
recursively follows subdirectory entries through their cluster chains.
The boot sector and allocation table are not parsed here: callers supply
the cluster size, a cluster chain walker, and the cluster to byte offset
mapping.
'''
import logging

import fatdissect.formats.fatdir as fatdir

from fatdissect.errors import InvalidImage, InvalidTimestamp, ChecksumMismatch, CorruptDirectoryStructure, \
        CorruptFileSystemError


logger = logging.getLogger(__name__)


# subdirectories nested deeper than this are assumed to be a cycle
MAX_DIRECTORY_DEPTH = 256

# code units that end or pad a long name
LONG_NAME_TERMINATOR = b'\x00\x00'
LONG_NAME_PADDING = b'\xFF\xFF'


def computeShortNameChecksum(name_bytes):
    '''
    additive bytewise ROR of the raw 11 byte 8.3 name.
    via: http://staff.washington.edu/dittrich/misc/fatgen103.pdf


    type name_bytes: bytes
    rtype: int
    '''
    csum = 0
    for d in name_bytes:
        if csum & 1:
            csum = 0x80 + (csum >> 1) + d
        else:
            csum = (csum >> 1) + d
        csum &= 0xFF
    return csum


def decodeLongName(data):
    '''
    decode the concatenated name spans of a long name.
    the name ends at the first NULL code unit, and may be padded with 0xFFFF.

    type data: bytes
    rtype: unicode
    '''
    units = [data[i:i + 2] for i in range(0, len(data) - 1, 2)]
    if LONG_NAME_TERMINATOR in units:
        units = units[:units.index(LONG_NAME_TERMINATOR)]
    while units and units[-1] == LONG_NAME_PADDING:
        units.pop()
    return b''.join(units).decode('utf-16le', errors='replace')


class LongNameRun:
    '''
    the long name fragments found before a short entry.
    fragments are usually stored in descending order, but are keyed by
     ordinal so the disk order does not matter.
    '''
    def __init__(self):
        self.fragments = {}

    def __len__(self):
        return len(self.fragments)

    def accepts(self, fragment):
        '''
        can this fragment belong to the current run?
        a repeated ordinal, or a second fragment marked last, means a new long name has started.

        type fragment: fatdir.LONG_DIRECTORY_ENTRY
        rtype: bool
        '''
        if fragment.ordinal in self.fragments:
            return False

        if fragment.is_last and any(f.is_last for f in self.fragments.values()):
            return False

        return True

    def add(self, fragment):
        self.fragments[fragment.ordinal] = fragment

    @property
    def ordinals(self):
        return sorted(self.fragments)

    @property
    def long_name(self):
        '''
        reconstruct the long name from the fragments, ordered 1..N.

        rtype: unicode
        '''
        data = b''.join(self.fragments[i].name_fragment for i in self.ordinals)
        return decodeLongName(data)

    def resolve(self, entry):
        '''
        attach this run to the short entry that follows it.
        problems are reported, but never prevent the long name from being used.

        type entry: fatdir.SHORT_DIRECTORY_ENTRY

        rtype: Tuple[unicode, List[Exception]]
        '''
        warnings = []

        csum = computeShortNameChecksum(entry.name_bytes)
        bad = [i for i in self.ordinals if self.fragments[i].checksum != csum]
        if bad:
            warnings.append(ChecksumMismatch('long name fragments %s do not match checksum 0x%02x of %s' % (
                bad, csum, entry.short_name)))

        if self.ordinals != list(range(1, len(self) + 1)):
            warnings.append(CorruptDirectoryStructure('long name fragments are not contiguous: %s' % (self.ordinals,)))

        if not self.fragments[self.ordinals[-1]].is_last:
            warnings.append(CorruptDirectoryStructure('long name of %s is missing its last fragment' % (entry.short_name)))

        return self.long_name, warnings


class DirectoryEntry:
    '''
    a decoded file, subdirectory or volume label.
    timestamps are None where the entry does not record them.
    '''
    def __init__(self, short_name, long_name=None, extension='', attributes=0, reserved=0,
                 created=None, accessed=None, modified=None, size=0, cluster=0, offset=None, warnings=()):
        self.short_name = short_name
        self.long_name = long_name
        self.extension = extension
        self.attributes = attributes
        self.reserved = reserved
        self.created = created
        self.accessed = accessed
        self.modified = modified
        self.size = size
        self.cluster = cluster
        self.offset = offset
        self.warnings = tuple(warnings)

    @classmethod
    def fromRecord(cls, record, offset, long_name=None, warnings=(), **kwargs):
        '''
        construct an entry from a decoded short record.

        type record: fatdir.SHORT_DIRECTORY_ENTRY
        type offset: int
        '''
        created, accessed, modified = getTimestamps(record)
        return cls(record.short_name,
                long_name=long_name,
                extension=record.DIR_Ext.rstrip(b' ').decode(fatdir.SHORT_NAME_CODEC),
                attributes=record.DIR_Attr,
                reserved=record.DIR_NTRes,
                created=created,
                accessed=accessed,
                modified=modified,
                size=record.DIR_FileSize,
                cluster=record.first_cluster,
                offset=offset,
                warnings=warnings,
                **kwargs)

    @property
    def name(self):
        return self.long_name or self.short_name

    @property
    def attribute_names(self):
        return fatdir.getAttributeNames(self.attributes)

    @property
    def is_directory(self):
        return False

    @property
    def is_dot_entry(self):
        return False

    def _key(self):
        return (type(self), self.short_name, self.long_name, self.attributes, self.reserved,
                self.created, self.accessed, self.modified, self.size, self.cluster,
                tuple((type(w), str(w)) for w in self.warnings))

    def __eq__(self, other):
        if not isinstance(other, DirectoryEntry):
            return NotImplemented
        return self._key() == other._key()

    __hash__ = None


class File(DirectoryEntry):
    '''
    a file (or volume label) found in a directory.
    '''
    def __str__(self):
        return 'File (name: %s)' % (self.name)


class Directory(DirectoryEntry):
    '''
    a directory and its children, in on-disk order.
    the children are built before the directory, and never change.
    '''
    def __init__(self, short_name, children=(), **kwargs):
        super(Directory, self).__init__(short_name, **kwargs)
        self.children = tuple(children)

    @property
    def is_directory(self):
        return True

    @property
    def is_dot_entry(self):
        return self.short_name in ('.', '..')

    @property
    def files(self):
        return tuple(c for c in self.children if not c.is_directory)

    @property
    def subdirectories(self):
        return tuple(c for c in self.children if c.is_directory and not c.is_dot_entry)

    def walk(self, prefix=''):
        '''
        enumerate every entry below this directory, depth first.
        self and parent references are skipped.

        rtype: Sequence[Tuple[unicode, DirectoryEntry]]
        '''
        for child in self.children:
            if child.is_dot_entry:
                continue

            path = prefix + '/' + child.name
            yield path, child
            if child.is_directory:
                yield from child.walk(prefix=path)

    def _key(self):
        return super(Directory, self)._key() + (tuple(c._key() for c in self.children),)

    def __str__(self):
        return 'Directory (name: %s)' % (self.name)


def getTimestamps(record):
    '''
    decode the create, access and modify stamps of a short record.
    a zero date means the stamp was never recorded.

    type record: fatdir.SHORT_DIRECTORY_ENTRY
    rtype: Tuple[FatTimestamp, FatDate, FatTimestamp]
    '''
    created = record.created if record.DIR_CrtDate else None
    accessed = record.accessed if record.DIR_LstAccDate else None
    modified = record.modified if record.DIR_WrtDate else None
    return created, accessed, modified


def checkTimestamps(record):
    '''
    report the stamps of a short record that fall outside the calendar.

    type record: fatdir.SHORT_DIRECTORY_ENTRY
    rtype: List[InvalidTimestamp]
    '''
    warnings = []
    for field, stamp in zip(('created', 'accessed', 'modified'), getTimestamps(record)):
        if stamp is not None and not stamp.isValid():
            warnings.append(InvalidTimestamp('%s timestamp out of range: %s' % (field, stamp)))
    return warnings


class DirectoryTreeBuilder:
    '''
    builds the Directory tree rooted at a directory region of an image.

    a directory region is a list of (offset, length) byte ranges that are
     scanned as one continuous sequence of records: either the fixed root
     directory of FAT12/16, or the clusters in a cluster chain.
    '''
    def __init__(self, image, bytes_per_cluster, cluster_chain_of, cluster_to_offset, max_depth=MAX_DIRECTORY_DEPTH):
        '''
        param image: read-only byte source, providing `readAtOffset` and `readRange`.

        param bytes_per_cluster: the size of a cluster in bytes.
        type bytes_per_cluster: int

        param cluster_chain_of: callable mapping a starting cluster to the
         clusters of its chain, including the starting cluster.
        type cluster_chain_of: Callable[[int], Sequence[int]]

        param cluster_to_offset: callable mapping a cluster number and the
         cluster size to a byte offset in the image.
        type cluster_to_offset: Callable[[int, int], int]

        param max_depth: subdirectories nested deeper than this are not expanded.
        type max_depth: int
        '''
        if image is None:
            raise InvalidImage('cannot read a null image')

        if bytes_per_cluster <= 0 or bytes_per_cluster % fatdir.DIR_ENTRY_SIZE != 0:
            raise ValueError('invalid cluster size: %r' % (bytes_per_cluster,))

        self.image = image
        self.bytes_per_cluster = bytes_per_cluster
        self.cluster_chain_of = cluster_chain_of
        self.cluster_to_offset = cluster_to_offset
        self.max_depth = max_depth

    def getClusterRegions(self, cluster):
        '''
        the byte ranges of the clusters in the chain starting at `cluster`.

        rtype: List[Tuple[int, int]]
        '''
        return [(self.cluster_to_offset(c, self.bytes_per_cluster), self.bytes_per_cluster)
                for c in self.cluster_chain_of(cluster)]

    def iterRecords(self, regions):
        '''
        enumerate the (offset, record) pairs of a directory region,
         stopping at the end of directory marker.

        rtype: Sequence[Tuple[int, Union[SHORT_DIRECTORY_ENTRY, LONG_DIRECTORY_ENTRY]]]
        '''
        for region_offset, region_size in regions:
            # a record never straddles two regions
            region_end = region_offset + region_size - fatdir.DIR_ENTRY_SIZE
            for offset in range(region_offset, region_end + 1, fatdir.DIR_ENTRY_SIZE):
                record = fatdir.parseRecord(self.image, offset)
                if record.is_end:
                    logger.debug('directory: end: off: %x', offset)
                    return
                yield offset, record

    def iterEntries(self, regions):
        '''
        enumerate the short entries of a directory region, with their long names.
        deleted records and orphaned long name fragments are skipped.

        rtype: Sequence[Tuple[int, SHORT_DIRECTORY_ENTRY, unicode, List[Exception]]]
        '''
        run = LongNameRun()
        for offset, record in self.iterRecords(regions):
            if record.is_deleted:
                if len(run) > 0:
                    logger.debug('directory: discard orphan long name: off: %x', offset)
                run = LongNameRun()
                continue

            if record.is_long_name:
                if not run.accepts(record):
                    logger.debug('directory: discard orphan long name: off: %x', offset)
                    run = LongNameRun()
                run.add(record)
                continue

            long_name = None
            warnings = []
            if len(run) > 0:
                long_name, warnings = run.resolve(record)
                run = LongNameRun()

            yield offset, record, long_name, warnings

        if len(run) > 0:
            logger.debug('directory: discard orphan long name at end of directory')

    def _buildEntry(self, offset, record, long_name, warnings, depth, ancestors):
        warnings = list(warnings)
        warnings.extend(checkTimestamps(record))

        if (record.is_directory or record.is_volume_label) and record.DIR_FileSize != 0:
            warnings.append(CorruptDirectoryStructure('%s has nonzero size %d' % (
                record.short_name, record.DIR_FileSize)))

        if not record.is_directory:
            entry = File.fromRecord(record, offset, long_name=long_name, warnings=warnings)
            self._logWarnings(entry)
            return entry

        children = ()
        if not record.is_dot_entry:
            cluster = record.first_cluster
            if depth >= self.max_depth:
                warnings.append(CorruptDirectoryStructure('directory nesting exceeds %d levels' % (self.max_depth)))
            elif cluster in ancestors:
                warnings.append(CorruptDirectoryStructure('directory cycle at cluster 0x%x' % (cluster)))
            else:
                children = self._buildSubdirectory(record, depth, ancestors, warnings)

        entry = Directory.fromRecord(record, offset, long_name=long_name, warnings=warnings, children=children)
        self._logWarnings(entry)
        return entry

    def _getChainRegions(self, cluster, warnings):
        '''
        the byte ranges of a directory's cluster chain.
        a corrupt or empty chain yields no regions, and is appended to `warnings`.
        '''
        try:
            regions = self.getClusterRegions(cluster)
        except CorruptFileSystemError as e:
            warnings.append(CorruptDirectoryStructure('bad cluster chain at 0x%x: %s' % (cluster, e)))
            return []

        if len(regions) == 0:
            warnings.append(CorruptDirectoryStructure('no clusters allocated at 0x%x' % (cluster)))
        return regions

    def _buildSubdirectory(self, record, depth, ancestors, warnings):
        '''
        build the children of a subdirectory entry.
        problems with its cluster chain are appended to `warnings`.
        '''
        cluster = record.first_cluster
        regions = self._getChainRegions(cluster, warnings)
        if len(regions) == 0:
            return ()

        logger.debug('directory: enter: name: %s start: %x', record.short_name, cluster)
        return self._buildChildren(regions, depth + 1, ancestors | frozenset([cluster]))

    def _buildChildren(self, regions, depth, ancestors):
        return tuple(self._buildEntry(offset, record, long_name, warnings, depth, ancestors)
                     for offset, record, long_name, warnings in self.iterEntries(regions))

    def _logWarnings(self, entry):
        for w in entry.warnings:
            logger.warning('directory: entry: off: %x name: %s: %s: %s',
                    entry.offset, entry.name, type(w).__name__, w)

    def build(self, root_offset=None, root_size=None, root_cluster=None):
        '''
        build the tree of the root directory.

        the root is either the cluster chain starting at `root_cluster` (FAT32),
         or the fixed region of `root_size` bytes at `root_offset` (FAT12/16).
         `root_size` defaults to one cluster.

        rtype: Directory
        '''
        warnings = []
        if root_cluster is not None:
            regions = self._getChainRegions(root_cluster, warnings)
            ancestors = frozenset([root_cluster])
            if root_offset is None and len(regions) > 0:
                root_offset = regions[0][0]
        elif root_offset is not None:
            regions = [(root_offset, root_size or self.bytes_per_cluster)]
            ancestors = frozenset()
        else:
            raise ValueError('either root_offset or root_cluster is required')

        logger.debug('directory: root: off: %s regions: %d', root_offset, len(regions))
        children = self._buildChildren(regions, 0, ancestors)
        root = Directory('/',
                attributes=fatdir.DIRECTORY_ATTRIBUTES.ATTR_DIRECTORY,
                cluster=root_cluster or 0,
                offset=root_offset,
                warnings=warnings,
                children=children)
        for w in root.warnings:
            logger.warning('directory: root: %s: %s', type(w).__name__, w)
        return root


def buildTree(image, root_offset, bytes_per_cluster, cluster_chain_of, cluster_to_offset,
              root_size=None, root_cluster=None, max_depth=MAX_DIRECTORY_DEPTH):
    '''
    decode the directory tree of a FAT image.
    `InvalidImage` and `OutOfRange` abort the build; every other problem is
     attached to the affected entry's `warnings`.

    Example:

        root = buildTree(image, layout.root_dir_offset, layout.bytes_per_cluster,
                         layout.getClusterChain, layout.clusterToByteOffset,
                         root_size=layout.root_dir_size)
        for path, entry in root.walk():
            print(path, entry.size)

    rtype: Directory
    '''
    builder = DirectoryTreeBuilder(image, bytes_per_cluster, cluster_chain_of, cluster_to_offset, max_depth=max_depth)
    return builder.build(root_offset=root_offset, root_size=root_size, root_cluster=root_cluster)
