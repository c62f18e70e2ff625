'''
FAT12/16/32 boot sector and allocation table structures.

Supplies the layout parameters and cluster chains that the directory tree
builder consumes. The FAT variant is named by the caller; it is not
detected from the image.
'''
import logging

import vstruct2.types as v_types

import fatdissect.formats.fattree as fattree

from fatdissect.errors import CorruptFileSystemError


logger = logging.getLogger(__name__)


# the boot sector structures span one 512 byte sector
BOOT_SECTOR_SIZE = 512

# the first cluster of the data region
FIRST_DATA_CLUSTER = 2

FAT_TYPES = v_types.venum()
FAT_TYPES.FAT12 = 12
FAT_TYPES.FAT16 = 16
FAT_TYPES.FAT32 = 32

# mask of usable bits in a file allocation table entry
FAT_ENTRY_MASKS = {
    FAT_TYPES.FAT12: 0x0FFF,
    FAT_TYPES.FAT16: 0xFFFF,
    FAT_TYPES.FAT32: 0x0FFFFFFF,
}

# reserved file allocation table entry values.
# via: http://www.ntfs.com/fat-allocation.htm
CLUSTER_TYPES = v_types.venum()
CLUSTER_TYPES.UNUSED = 0x0
CLUSTER_TYPES.BAD = 0xFFFFFFF7
CLUSTER_TYPES.LAST = 0xFFFFFFF8


def _addBiosParameterBlock(vs):
    # fields common to all FAT variants, 36 bytes at the start of the boot sector
    vs.BS_jmpBoot = v_types.vbytes(size=3)
    vs.BS_OEMName = v_types.vbytes(size=8)
    vs.BPB_BytsPerSec = v_types.uint16()
    vs.BPB_SecPerClus = v_types.uint8()
    vs.BPB_RsvdSecCnt = v_types.uint16()
    vs.BPB_NumFATs = v_types.uint8()
    vs.BPB_RootEntCnt = v_types.uint16()
    vs.BPB_TotSec16 = v_types.uint16()
    vs.BPB_Media = v_types.uint8()
    vs.BPB_FATSz16 = v_types.uint16()
    vs.BPB_SecPerTrk = v_types.uint16()
    vs.BPB_NumHeads = v_types.uint16()
    vs.BPB_HiddSec = v_types.uint32()
    vs.BPB_TotSec32 = v_types.uint32()


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
class BIOS_PARAMETER_BLOCK_FAT16(v_types.VStruct):
    '''
    the boot sector of a FAT12 or FAT16 file system.
    the root directory is a fixed region that follows the allocation tables.
    '''
    def __init__(self):
        super(BIOS_PARAMETER_BLOCK_FAT16, self).__init__()
        _addBiosParameterBlock(self)
        # offset 36
        self.BS_DrvNum = v_types.uint8()
        self.BS_Reserved1 = v_types.uint8()
        self.BS_BootSig = v_types.uint8()
        self.BS_VolID = v_types.uint32()
        self.BS_VolLab = v_types.vbytes(size=11)
        self.BS_FilSysType = v_types.vbytes(size=8)
        self.BS_BootCode = v_types.vbytes(size=448)
        self.EndOfSectorMarker = v_types.uint16()


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
class BIOS_PARAMETER_BLOCK_FAT32(v_types.VStruct):
    '''
    the boot sector of a FAT32 file system.
    the root directory is an ordinary cluster chain starting at BPB_RootClus.
    '''
    def __init__(self):
        super(BIOS_PARAMETER_BLOCK_FAT32, self).__init__()
        _addBiosParameterBlock(self)
        # offset 36
        self.BPB_FATSz32 = v_types.uint32()
        self.BPB_ExtFlags = v_types.uint16()
        self.BPB_FSVer = v_types.uint16()
        self.BPB_RootClus = v_types.uint32()
        self.BPB_FSInfo = v_types.uint16()
        self.BPB_BkBootSec = v_types.uint16()
        self.BPB_Reserved = v_types.vbytes(size=12)
        self.BS_DrvNum = v_types.uint8()
        self.BS_Reserved1 = v_types.uint8()
        self.BS_BootSig = v_types.uint8()
        self.BS_VolID = v_types.uint32()
        self.BS_VolLab = v_types.vbytes(size=11)
        self.BS_FilSysType = v_types.vbytes(size=8)
        self.BS_BootCode = v_types.vbytes(size=420)
        self.EndOfSectorMarker = v_types.uint16()


class FatLayout:
    '''
    the geometry of a FAT file system within an image, and its cluster chains.
    all offsets are byte offsets into the image.

    Example:

        layout = FatLayout(image, FAT_TYPES.FAT16)
        root = layout.getDirectoryTree()

    '''
    def __init__(self, image, variant, off=0):
        '''
        param image: read-only byte source.
        param variant: one of FAT_TYPES.
        param off: the offset of the file system (its boot sector) in the image.
        '''
        if variant not in FAT_ENTRY_MASKS:
            raise ValueError('unsupported FAT variant: %r' % (variant,))

        self.image = image
        self.variant = variant
        self.off = off

        if variant == FAT_TYPES.FAT32:
            self.bpb = BIOS_PARAMETER_BLOCK_FAT32()
        else:
            self.bpb = BIOS_PARAMETER_BLOCK_FAT16()
        self.bpb.vsParse(image.readRange(off, BOOT_SECTOR_SIZE))

        self._validate()
        logger.debug('fat: variant: %d cluster size: %x fat: %x root: %x data: %x clusters: %x',
                variant, self.bytes_per_cluster, self.fat_offset, self.root_dir_offset,
                self.data_offset, self.cluster_count)

    def _validate(self):
        if self.bpb.BPB_BytsPerSec == 0:
            raise CorruptFileSystemError('invalid bytes per sector')
        if self.bpb.BPB_SecPerClus == 0:
            raise CorruptFileSystemError('invalid sectors per cluster')
        if self.bpb.BPB_NumFATs == 0:
            raise CorruptFileSystemError('invalid FAT count')
        if self.fat_size == 0:
            raise CorruptFileSystemError('invalid FAT size')
        if self.variant == FAT_TYPES.FAT32 and self.bpb.BPB_RootClus < FIRST_DATA_CLUSTER:
            raise CorruptFileSystemError('invalid root cluster')

    @property
    def bytes_per_sector(self):
        return self.bpb.BPB_BytsPerSec

    @property
    def bytes_per_cluster(self):
        return self.bpb.BPB_SecPerClus * self.bytes_per_sector

    @property
    def total_sector_count(self):
        '''
        total number of sectors in this file system.
        '''
        if self.bpb.BPB_TotSec16 != 0:
            return self.bpb.BPB_TotSec16
        return self.bpb.BPB_TotSec32

    @property
    def fat_size(self):
        '''
        size of each allocation table in sectors.
        '''
        if self.bpb.BPB_FATSz16 != 0 or self.variant != FAT_TYPES.FAT32:
            return self.bpb.BPB_FATSz16
        return self.bpb.BPB_FATSz32

    @property
    def fat_offset(self):
        '''
        offset of the first allocation table.
        '''
        return self.off + self.bpb.BPB_RsvdSecCnt * self.bytes_per_sector

    @property
    def root_dir_offset(self):
        '''
        offset of the fixed root directory region (FAT12/16), or of the data region (FAT32).
        '''
        return self.fat_offset + self.bpb.BPB_NumFATs * self.fat_size * self.bytes_per_sector

    @property
    def root_dir_size(self):
        '''
        size in bytes of the fixed root directory region. zero on FAT32.
        '''
        if self.variant == FAT_TYPES.FAT32:
            return 0
        return self.bpb.BPB_RootEntCnt * 0x20

    @property
    def root_cluster(self):
        '''
        first cluster of the root directory on FAT32, otherwise None.
        '''
        if self.variant == FAT_TYPES.FAT32:
            return self.bpb.BPB_RootClus
        return None

    @property
    def data_offset(self):
        '''
        offset of the first data cluster (cluster 2).
        '''
        bps = self.bytes_per_sector
        root_dir_sectors = (self.root_dir_size + bps - 1) // bps
        return self.root_dir_offset + root_dir_sectors * bps

    @property
    def cluster_count(self):
        '''
        total number of data clusters in this file system.
        '''
        data_sectors = self.total_sector_count - (self.data_offset - self.off) // self.bytes_per_sector
        return max(data_sectors, 0) // self.bpb.BPB_SecPerClus

    def clusterToByteOffset(self, cluster, bytes_per_cluster):
        '''
        get the offset of the data for the given cluster number.

        type cluster: int
        type bytes_per_cluster: int
        rtype: int
        '''
        return self.data_offset + (cluster - FIRST_DATA_CLUSTER) * bytes_per_cluster

    def getFatEntry(self, cluster):
        '''
        read the allocation table entry for the given cluster.
        end of chain and bad cluster markers are normalized to CLUSTER_TYPES.

        type cluster: int
        rtype: int
        '''
        mask = FAT_ENTRY_MASKS[self.variant]

        if self.variant == FAT_TYPES.FAT12:
            # 1.5 bytes per entry. odd entries use the high 12 bits of the word.
            byts = self.image.readRange(self.fat_offset + cluster + (cluster // 2), 2)
            entry = int.from_bytes(byts, 'little')
            if cluster & 1:
                entry >>= 4
        elif self.variant == FAT_TYPES.FAT16:
            byts = self.image.readRange(self.fat_offset + cluster * 2, 2)
            entry = int.from_bytes(byts, 'little')
        else:
            byts = self.image.readRange(self.fat_offset + cluster * 4, 4)
            entry = int.from_bytes(byts, 'little')

        entry &= mask
        if entry >= CLUSTER_TYPES.LAST & mask:
            return CLUSTER_TYPES.LAST
        if entry == CLUSTER_TYPES.BAD & mask:
            return CLUSTER_TYPES.BAD
        return entry

    def isValidCluster(self, cluster):
        return FIRST_DATA_CLUSTER <= cluster < FIRST_DATA_CLUSTER + self.cluster_count

    def getClusterChain(self, start_cluster_num):
        '''
        get the cluster numbers that make up the chain starting at the given cluster.
        the chain includes the starting cluster, and no end marker.
        an invalid starting cluster yields an empty chain.

        type start_cluster_num: int
        rtype: List[int]
        '''
        if not self.isValidCluster(start_cluster_num):
            logger.debug('fat: chain: invalid start: %x', start_cluster_num)
            return []

        ret = []
        seen = set()
        entry = start_cluster_num
        while True:
            if entry in seen:
                raise CorruptFileSystemError('cluster chain loops at 0x%x' % (entry))
            seen.add(entry)
            ret.append(entry)

            nxt = self.getFatEntry(entry)
            if nxt == CLUSTER_TYPES.LAST:
                break
            if nxt == CLUSTER_TYPES.BAD:
                raise CorruptFileSystemError('bad cluster encountered')
            if not self.isValidCluster(nxt):
                raise CorruptFileSystemError('cluster chain leaves the data region at 0x%x' % (nxt))
            entry = nxt

        return ret

    def getDirectoryTree(self, max_depth=fattree.MAX_DIRECTORY_DEPTH):
        '''
        decode the directory tree of this file system.

        rtype: fattree.Directory
        '''
        if self.variant == FAT_TYPES.FAT32:
            # the root is located through its cluster chain
            root_offset = None
        else:
            root_offset = self.root_dir_offset

        return fattree.buildTree(self.image,
                root_offset,
                self.bytes_per_cluster,
                self.getClusterChain,
                self.clusterToByteOffset,
                root_size=self.root_dir_size or None,
                root_cluster=self.root_cluster,
                max_depth=max_depth)
