'''
Build blank FAT32 file system images.

example:
  buf = ImageBuilder().build(10 * MEGABYTE)
  saveImage('disk.img', buf)
'''
import os
import logging
import contextlib

import fat32mk.formats.fat as fat
import fat32mk.formats.fsinfo as fsinfo
import fat32mk.formats.bootsector as bootsector


logger = logging.getLogger(__name__)


KILOBYTE = 1024
MEGABYTE = 1024 * KILOBYTE

# assumption: sectors are 512-bytes in length
BYTES_PER_SECTOR = 512

# larger clusters do not work with most FAT drivers
MAX_CLUSTER_SIZE = 32 * KILOBYTE

MAX_SECTORS_PER_CLUSTER = 128
MAX_RESERVED_SECTOR_COUNT = 0xFFFF
MAX_FAT_COUNT = 0xFF
MAX_TOTAL_SECTORS = 0xFFFFFFFF

DEFAULT_SIZE_MB = 10
DEFAULT_SECTORS_PER_CLUSTER = 1
DEFAULT_RESERVED_SECTOR_COUNT = 34
DEFAULT_FAT_COUNT = 2
DEFAULT_OEM_NAME = 'FAT32MK'
DEFAULT_VOLUME_LABEL = 'NO NAME'
DEFAULT_VOLUME_ID = 0

# fixed (non-removable) media
MEDIA_FIXED = 0xF8

# short jump over the BPB, then NOP
JMP_BOOT = b'\xEB\x58\x90'

# first hard disk for int 0x13
DRIVE_NUMBER = 0x80

ROOT_CLUSTER = 2
FSINFO_SECTOR = 1
BACKUP_BOOT_SECTOR = 6

FILE_SYSTEM_TYPE = 'FAT32'


class GeometryError(ValueError):
    '''
    the requested formatting parameters do not describe a valid FAT32 volume.
    '''
    def __init__(self, name, valu, msg):
        ValueError.__init__(self, '%s: %s (got %r)' % (name, msg, valu))
        self.name = name
        self.valu = valu


def downAlign(n, align):
    '''
    round `n` down to a multiple of `align`.
    '''
    return n - (n % align)


def isPowerOfTwo(n):
    return n > 0 and n & (n - 1) == 0


class VolumeGeometry:
    '''
    the layout numbers of a volume, derived from the image size and the
    formatting parameters.

      +----------+--------+--------+---------------------+
      | reserved |  FAT1  |  FAT2  |  clusters (2, 3...) |
      +----------+--------+--------+---------------------+
      0          |        |
                 |        fat_offsets[1]
                 fat_offsets[0] == reserved_size

    each data cluster costs one table entry in every FAT copy, so the
     space after the reserved region is shared out between clusters and
     their table entries.
    '''
    def __init__(self, image_size, sectors_per_cluster, reserved_sector_count, fat_count,
                 bytes_per_sector=BYTES_PER_SECTOR):
        self.image_size = image_size
        self.bytes_per_sector = bytes_per_sector
        self.sectors_per_cluster = sectors_per_cluster
        self.reserved_sector_count = reserved_sector_count
        self.fat_count = fat_count

        self.total_sectors = image_size // bytes_per_sector
        self.reserved_size = reserved_sector_count * bytes_per_sector
        self.cluster_size = sectors_per_cluster * bytes_per_sector

        self.cluster_count = (image_size - self.reserved_size) // \
                (self.cluster_size + fat_count * fat.FAT_ENTRY_SIZE)

        # whole sectors only, rounded down. trailing entries may be cut off.
        self.fat_size = downAlign(max(self.cluster_count, 0) * fat.FAT_ENTRY_SIZE, bytes_per_sector)
        self.fat_sectors = self.fat_size // bytes_per_sector

    @property
    def fat_offsets(self):
        '''
        byte offsets of each FAT copy within the image.

        rtype: Sequence[int]
        '''
        return [self.reserved_size + i * self.fat_size for i in range(self.fat_count)]

    @property
    def fat_entry_count(self):
        return self.fat_size // fat.FAT_ENTRY_SIZE

    @property
    def data_offset(self):
        '''
        byte offset of cluster 2, the first data cluster.
        '''
        return self.reserved_size + self.fat_count * self.fat_size

    @property
    def data_cluster_count(self):
        '''
        number of data clusters that are both on disk and addressable by the FAT.
        '''
        on_disk = (self.image_size - self.data_offset) // self.cluster_size
        addressable = self.fat_entry_count - fat.RESERVED_ENTRY_COUNT
        return max(min(on_disk, addressable), 0)

    def items(self):
        yield 'image_size', self.image_size
        yield 'bytes_per_sector', self.bytes_per_sector
        yield 'total_sectors', self.total_sectors
        yield 'sectors_per_cluster', self.sectors_per_cluster
        yield 'cluster_size', self.cluster_size
        yield 'cluster_count', self.cluster_count
        yield 'reserved_sector_count', self.reserved_sector_count
        yield 'reserved_size', self.reserved_size
        yield 'fat_count', self.fat_count
        yield 'fat_size', self.fat_size
        yield 'fat_sectors', self.fat_sectors
        yield 'fat_offsets', self.fat_offsets
        yield 'data_offset', self.data_offset
        yield 'data_cluster_count', self.data_cluster_count

    def __str__(self):
        return 'VolumeGeometry (sectors: %d clusters: %d fat sectors: %d)' % \
                (self.total_sectors, self.cluster_count, self.fat_sectors)


def computeGeometry(image_size,
                    sectors_per_cluster=DEFAULT_SECTORS_PER_CLUSTER,
                    reserved_sector_count=DEFAULT_RESERVED_SECTOR_COUNT,
                    fat_count=DEFAULT_FAT_COUNT):
    '''
    derive the volume layout for an image of `image_size` bytes.
    raises GeometryError if the parameters can't make a usable FAT32 volume.

    type image_size: int
    rtype: VolumeGeometry
    '''
    params = (('image_size', image_size),
              ('sectors_per_cluster', sectors_per_cluster),
              ('reserved_sector_count', reserved_sector_count),
              ('fat_count', fat_count))
    for name, valu in params:
        if not isinstance(valu, int):
            raise GeometryError(name, valu, 'must be an integer')

    if not isPowerOfTwo(sectors_per_cluster) or sectors_per_cluster > MAX_SECTORS_PER_CLUSTER:
        raise GeometryError('sectors_per_cluster', sectors_per_cluster,
                            'must be a power of two from 1 to %d' % (MAX_SECTORS_PER_CLUSTER))

    if sectors_per_cluster * BYTES_PER_SECTOR > MAX_CLUSTER_SIZE:
        raise GeometryError('sectors_per_cluster', sectors_per_cluster,
                            'clusters larger than %d bytes are not supported' % (MAX_CLUSTER_SIZE))

    if not 1 <= reserved_sector_count <= MAX_RESERVED_SECTOR_COUNT:
        raise GeometryError('reserved_sector_count', reserved_sector_count,
                            'must be from 1 to %d' % (MAX_RESERVED_SECTOR_COUNT))

    if not 1 <= fat_count <= MAX_FAT_COUNT:
        raise GeometryError('fat_count', fat_count, 'must be from 1 to %d' % (MAX_FAT_COUNT))

    if image_size <= 0:
        raise GeometryError('image_size', image_size, 'must be positive')

    geo = VolumeGeometry(image_size, sectors_per_cluster, reserved_sector_count, fat_count)

    if geo.total_sectors > MAX_TOTAL_SECTORS:
        raise GeometryError('image_size', image_size, 'too many sectors for FAT32')

    if geo.cluster_count <= 0:
        raise GeometryError('image_size', image_size,
                            'no room for a data cluster after %d reserved sectors' % (reserved_sector_count))

    if geo.fat_sectors == 0:
        raise GeometryError('image_size', image_size, 'FAT would be smaller than one sector')

    if geo.data_cluster_count == 0:
        raise GeometryError('image_size', image_size, 'no room for the root directory cluster')

    logger.debug('builder: geometry: %s', geo)
    return geo


class ImageBuilder:
    '''
    assembles a blank FAT32 image in memory.

    the builder owns the image buffer while it is being populated. the
     boot sector and allocation table views it hands out cover disjoint
     regions and are released before build() returns.
    '''
    def __init__(self,
                 sectors_per_cluster=DEFAULT_SECTORS_PER_CLUSTER,
                 reserved_sector_count=DEFAULT_RESERVED_SECTOR_COUNT,
                 fat_count=DEFAULT_FAT_COUNT,
                 media=MEDIA_FIXED,
                 oem_name=DEFAULT_OEM_NAME,
                 volume_label=DEFAULT_VOLUME_LABEL,
                 volume_id=DEFAULT_VOLUME_ID,
                 with_fsinfo=False):
        '''
        param with_fsinfo: also write an FSInfo sector and a backup boot sector.
        type with_fsinfo: bool
        '''
        self.sectors_per_cluster = sectors_per_cluster
        self.reserved_sector_count = reserved_sector_count
        self.fat_count = fat_count
        self.media = media
        self.oem_name = oem_name
        self.volume_label = volume_label
        self.volume_id = volume_id
        self.with_fsinfo = with_fsinfo

        # reject what the boot sector can't hold before any image is allocated
        for name, valu in (('BS_OEMName', oem_name),
                           ('BS_VolLab', volume_label),
                           ('BS_VolID', volume_id),
                           ('BPB_Media', media)):
            bootsector.encodeField(bootsector.getField(name), valu)

    def geometry(self, image_size):
        '''
        rtype: VolumeGeometry
        '''
        geo = computeGeometry(image_size,
                              sectors_per_cluster=self.sectors_per_cluster,
                              reserved_sector_count=self.reserved_sector_count,
                              fat_count=self.fat_count)

        # the FSInfo backup lives in the sector after the boot sector backup
        if self.with_fsinfo and self.reserved_sector_count <= BACKUP_BOOT_SECTOR + 1:
            raise GeometryError('reserved_sector_count', self.reserved_sector_count,
                                'must be more than %d to hold the backup boot sector' % (BACKUP_BOOT_SECTOR + 1))
        return geo

    def build(self, image_size):
        '''
        build an image of exactly `image_size` bytes.

        rtype: bytearray
        '''
        return self._assemble(self.geometry(image_size))

    def _assemble(self, geo):
        '''
        allocate and populate the image described by a computed geometry.

        type geo: VolumeGeometry
        rtype: bytearray
        '''
        buf = bytearray(geo.image_size)

        self._writeBootSector(buf, geo)

        off = bootsector.SIGNATURE_OFFSET
        buf[off:off + len(bootsector.SIGNATURE)] = bootsector.SIGNATURE

        for offset in geo.fat_offsets:
            logger.debug('builder: seed fat: offset: %x len: %x', offset, geo.fat_size)
            with fat.AllocationTable(buf, offset, geo.fat_size) as table:
                table.seedReservedEntries(self.media, root_cluster=ROOT_CLUSTER)

        if self.with_fsinfo:
            self._writeFSInfo(buf, geo)

        return buf

    def _writeBootSector(self, buf, geo):
        with bootsector.BootSector(buf) as bs:
            bs.BS_jmpBoot = JMP_BOOT
            bs.BS_OEMName = self.oem_name
            bs.BPB_BytsPerSec = geo.bytes_per_sector
            bs.BPB_SecPerClus = geo.sectors_per_cluster
            bs.BPB_RsvdSecCnt = geo.reserved_sector_count
            bs.BPB_NumFATs = geo.fat_count
            # FAT32 keeps the root directory in the data region
            bs.BPB_RootEntCnt = 0
            bs.BPB_TotSec16 = 0
            bs.BPB_Media = self.media
            bs.BPB_FATSz16 = 0
            # for CHS, can use zero, and for LBA mode
            # via: https://en.wikipedia.org/wiki/Master_boot_record
            bs.BPB_SecPerTrk = 0
            bs.BPB_NumHeads = 0
            bs.BPB_HiddSec = 0
            bs.BPB_TotSec32 = geo.total_sectors
            bs.BPB_FATSz32 = geo.fat_sectors
            bs.BPB_ExtFlags = 0
            bs.BPB_FSVer = 0
            bs.BPB_RootClus = ROOT_CLUSTER
            bs.BPB_FSInfo = FSINFO_SECTOR
            bs.BPB_BkBootSec = BACKUP_BOOT_SECTOR
            bs.BPB_Reserved = b''
            bs.BS_DrvNum = DRIVE_NUMBER
            bs.BS_Reserved1 = 0
            bs.BS_BootSig = bootsector.EXTENDED_BOOT_SIGNATURE
            bs.BS_VolID = self.volume_id
            bs.BS_VolLab = self.volume_label
            bs.BS_FilSysType = FILE_SYSTEM_TYPE

    def _writeFSInfo(self, buf, geo):
        sector = geo.bytes_per_sector

        fsi = fsinfo.newFSInfo(free_count=geo.data_cluster_count - 1,
                               next_free=ROOT_CLUSTER + 1)
        fsi_bytes = fsi.vsEmit()

        off = FSINFO_SECTOR * sector
        buf[off:off + len(fsi_bytes)] = fsi_bytes
        logger.debug('builder: fsinfo: offset: %x free: %x', off, geo.data_cluster_count - 1)

        # the backup boot sector is followed by a backup of the FSInfo sector
        off = BACKUP_BOOT_SECTOR * sector
        buf[off:off + sector] = buf[0:sector]
        off += sector
        buf[off:off + len(fsi_bytes)] = fsi_bytes
        logger.debug('builder: backup boot sector: offset: %x', BACKUP_BOOT_SECTOR * sector)


def saveImage(path, buf):
    '''
    write the whole image to `path` in one go.
    a partially written file is removed before the error is re-raised.
    '''
    f = open(path, 'wb')
    try:
        with f:
            f.write(buf)
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(path)
        raise


def mkfat32(path, size_mb=DEFAULT_SIZE_MB, **params):
    '''
    build a blank FAT32 image of `size_mb` megabytes and write it to `path`.
    keyword arguments are passed to ImageBuilder.

    rtype: VolumeGeometry
    '''
    if not isinstance(size_mb, int) or size_mb <= 0:
        raise GeometryError('size_mb', size_mb, 'must be positive')

    builder = ImageBuilder(**params)
    geo = builder.geometry(size_mb * MEGABYTE)
    buf = builder._assemble(geo)

    logger.info('write %s %dMB', path, size_mb)
    saveImage(path, buf)
    return geo
