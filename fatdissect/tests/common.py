'''
Builders for synthetic FAT directory records and images.
'''
import struct
import unittest

import fatdissect.formats.fat as fat
import fatdissect.formats.fattree as fattree

from fatdissect.image import ImageReader


SECTOR_SIZE = 512

# 2013-07-19 19:26:18, as in the packed date/time examples
TEST_DATE = 0x42F3
TEST_TIME = 0x9B49

END_RECORD = b'\x00' * 0x20


def shortEntry(name, ext=b'', attr=0x20, ntres=0, crt_tenth=0, crt_time=TEST_TIME, crt_date=TEST_DATE,
               acc_date=TEST_DATE, cluster=0, wrt_time=TEST_TIME, wrt_date=TEST_DATE, size=0):
    '''
    pack a 32 byte short directory record.
    '''
    return struct.pack('<8s3sBBBHHHHHHHI',
            name.ljust(8, b' '),
            ext.ljust(3, b' '),
            attr,
            ntres,
            crt_tenth,
            crt_time,
            crt_date,
            acc_date,
            (cluster >> 16) & 0xFFFF,
            wrt_time,
            wrt_date,
            cluster & 0xFFFF,
            size)


def dirEntry(name, cluster, ext=b'', **kwargs):
    kwargs.setdefault('attr', 0x10)
    return shortEntry(name, ext=ext, cluster=cluster, **kwargs)


def dotEntries(cluster, parent_cluster):
    return [dirEntry(b'.', cluster), dirEntry(b'..', parent_cluster)]


def longEntry(ordinal, chars, checksum):
    '''
    pack a 32 byte long name fragment from 26 bytes of name data.
    '''
    return struct.pack('<B10sBBB12sH4s', ordinal, chars[:10], 0x0F, 0, checksum, chars[10:22], 0, chars[22:26])


def longEntries(long_name, name_bytes, checksum=None):
    '''
    the long name fragments for a name, in on-disk (descending) order.
    '''
    data = long_name.encode('utf-16le')
    # add the utf-16 NULL, then pad with 0xFFFFs
    if len(data) % 26 != 0:
        data += b'\x00\x00'
    if len(data) % 26 != 0:
        data += b'\xFF' * (26 - (len(data) % 26))

    if checksum is None:
        checksum = fattree.computeShortNameChecksum(name_bytes)

    entries = []
    for i, off in enumerate(range(0, len(data), 26)):
        ordinal = i + 1
        if off + 26 == len(data):
            ordinal |= 0x40
        entries.append(longEntry(ordinal, data[off:off + 26], checksum))

    return list(reversed(entries))


def namedEntry(long_name, name, ext=b'', **kwargs):
    '''
    the long name fragments and short record for a file.
    '''
    name_bytes = name.ljust(8, b' ') + ext.ljust(3, b' ')
    return longEntries(long_name, name_bytes) + [shortEntry(name, ext=ext, **kwargs)]


def flatten(records):
    ret = []
    for r in records:
        if isinstance(r, list):
            ret.extend(r)
        else:
            ret.append(r)
    return b''.join(ret)


class DirectoryImage:
    '''
    an in-memory image with a fixed root region followed by data clusters.
    cluster chains are declared directly rather than through an allocation table.
    '''
    def __init__(self, cluster_size=SECTOR_SIZE, cluster_count=16, root_size=SECTOR_SIZE):
        self.cluster_size = cluster_size
        self.cluster_count = cluster_count
        self.root_size = root_size
        self.data = bytearray(root_size + cluster_size * cluster_count)
        self.chains = {}

    def setRoot(self, records):
        data = flatten(records)
        assert len(data) <= self.root_size
        self.data[0:len(data)] = data

    def setDirectory(self, clusters, records):
        '''
        write directory records across the given clusters, in order.
        '''
        data = flatten(records)
        assert len(data) <= len(clusters) * self.cluster_size
        self.chains[clusters[0]] = list(clusters)
        for i, cluster in enumerate(clusters):
            chunk = data[i * self.cluster_size:(i + 1) * self.cluster_size]
            off = self.clusterToByteOffset(cluster, self.cluster_size)
            self.data[off:off + len(chunk)] = chunk

    def clusterChainOf(self, cluster):
        return list(self.chains.get(cluster, []))

    def clusterToByteOffset(self, cluster, bytes_per_cluster):
        return self.root_size + (cluster - 2) * bytes_per_cluster

    def getImage(self):
        return ImageReader.fromBytes(self.data)

    def buildTree(self, **kwargs):
        return fattree.buildTree(self.getImage(), 0, self.cluster_size,
                self.clusterChainOf, self.clusterToByteOffset, root_size=self.root_size, **kwargs)


FAT_EOC = {
    fat.FAT_TYPES.FAT12: 0xFFF,
    fat.FAT_TYPES.FAT16: 0xFFFF,
    fat.FAT_TYPES.FAT32: 0x0FFFFFFF,
}


def packFat12(entries):
    out = bytearray(len(entries) + len(entries) // 2 + 2)
    for n, e in enumerate(entries):
        off = n + n // 2
        if n & 1:
            out[off] |= (e << 4) & 0xF0
            out[off + 1] = (e >> 4) & 0xFF
        else:
            out[off] = e & 0xFF
            out[off + 1] |= (e >> 8) & 0x0F
    return bytes(out)


def packFat(variant, entries):
    if variant == fat.FAT_TYPES.FAT12:
        return packFat12(entries)
    elif variant == fat.FAT_TYPES.FAT16:
        return struct.pack('<%dH' % len(entries), *entries)
    return struct.pack('<%dI' % len(entries), *entries)


def makeFatImage(variant, directories, root_records=(), cluster_count=32, root_entries=16, fat_entries=None):
    '''
    build a complete FAT image with one sector per cluster.

    param directories: map of first cluster to (chain, records). on FAT32 the
     root directory is the entry for cluster 2.
    param fat_entries: map of cluster to raw allocation table values, applied last.

    rtype: bytes
    '''
    is_fat32 = variant == fat.FAT_TYPES.FAT32
    if is_fat32:
        root_entries = 0

    entries = [0] * (cluster_count + 2)
    entries[0] = FAT_EOC[variant] & 0xFFFFFFF8
    entries[1] = FAT_EOC[variant]
    for chain, _ in directories.values():
        for cur, nxt in zip(chain, chain[1:]):
            entries[cur] = nxt
        entries[chain[-1]] = FAT_EOC[variant]
    for cluster, value in (fat_entries or {}).items():
        entries[cluster] = value

    fat_data = packFat(variant, entries)
    fat_sectors = (len(fat_data) + SECTOR_SIZE - 1) // SECTOR_SIZE
    fat_data = fat_data.ljust(fat_sectors * SECTOR_SIZE, b'\x00')

    reserved = 2 if is_fat32 else 1
    num_fats = 2
    root_sectors = (root_entries * 0x20 + SECTOR_SIZE - 1) // SECTOR_SIZE
    total_sectors = reserved + num_fats * fat_sectors + root_sectors + cluster_count

    bpb = struct.pack('<3s8sHBHBHHBHHHII',
            b'\xEB\x3C\x90',
            b'mkfs.fat',
            SECTOR_SIZE,
            1,
            reserved,
            num_fats,
            root_entries,
            total_sectors,
            0xF8,
            0 if is_fat32 else fat_sectors,
            0,
            0,
            0,
            0)

    if is_fat32:
        bpb += struct.pack('<IHHIHH12sBBBI11s8s',
                fat_sectors, 0, 0, 2, 1, 0, b'\x00' * 12,
                0x80, 0, 0x29, 0x12345678, b'NO NAME    ', b'FAT32   ')
    else:
        fs_type = b'FAT12   ' if variant == fat.FAT_TYPES.FAT12 else b'FAT16   '
        bpb += struct.pack('<BBBI11s8s', 0x80, 0, 0x29, 0x12345678, b'NO NAME    ', fs_type)

    boot = bpb.ljust(SECTOR_SIZE - 2, b'\x00') + b'\x55\xAA'
    image = bytearray(boot)
    image += b'\x00' * ((reserved - 1) * SECTOR_SIZE)
    image += fat_data * num_fats

    root = flatten(list(root_records)).ljust(root_sectors * SECTOR_SIZE, b'\x00')
    image += root

    data = bytearray(cluster_count * SECTOR_SIZE)
    for chain, records in directories.values():
        byts = flatten(records)
        for i, cluster in enumerate(chain):
            chunk = byts[i * SECTOR_SIZE:(i + 1) * SECTOR_SIZE]
            off = (cluster - 2) * SECTOR_SIZE
            data[off:off + len(chunk)] = chunk
    image += data

    assert len(image) == total_sectors * SECTOR_SIZE
    return bytes(image)


class FatTest(unittest.TestCase):

    def getWarnings(self, entry, cls):
        return [w for w in entry.warnings if isinstance(w, cls)]

    def assertNoWarnings(self, entry):
        self.assertEqual(entry.warnings, ())

    def getChild(self, directory, name):
        for child in directory.children:
            if child.name == name:
                return child
        self.fail('no child named %s in %s' % (name, directory))
