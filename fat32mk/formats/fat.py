'''
FAT32 file allocation table entries.
'''
import logging

import vstruct2.types as v_types


logger = logging.getLogger(__name__)


# size of an entry in the FAT32 file allocation table
FAT_ENTRY_SIZE = 0x4

# mask of usable bits in a file allocation table entry
FAT_ENTRY_MASK = 0x0FFFFFFF

# largest value a raw 32 bit entry can hold
FAT_ENTRY_MAX = 0xFFFFFFFF


# reserved file allocation table entry values.
# via: http://www.ntfs.com/fat-allocation.htm
CLUSTER_TYPES = v_types.venum()
CLUSTER_TYPES.UNUSED = 0x0
CLUSTER_TYPES.LAST = 0xFFFFFFFF & FAT_ENTRY_MASK

# number of leading entries that do not describe data clusters
RESERVED_ENTRY_COUNT = 2


def mediaEntry(media):
    '''
    FAT[0]: the media descriptor in the low byte, all other usable bits set.

    rtype: int
    '''
    return (0xFFFFFF00 | (media & 0xFF)) & FAT_ENTRY_MASK


class FAT_ENTRY(v_types.VStruct):
    '''
    a single 32 bit little endian allocation table entry.
    '''
    def __init__(self):
        super(FAT_ENTRY, self).__init__()
        self.Value = v_types.uint32()


class AllocationTable:
    '''
    key datastructure of FAT32. defines the allocation state of each
     cluster in the file system.

    this is a view over one copy of the table inside a larger buffer.
     entry `i` lives at byte `i * 4` of the region. the view never copies
     the region: reads and writes go straight to the caller's buffer.

    the first entries of a freshly formatted table look like:

        +----------------+
        | 0:  0x0FFFFFF8 |  media descriptor in the low byte
        +----------------+
        | 1:  0x0FFFFFFF |  end of chain marker
        +----------------+
        | 2:  0x0FFFFFFF |  root directory, a single cluster chain
        +----------------+
        | 3:  UNUSED     |
        +----------------+
        | ...            |
    '''
    def __init__(self, buf, offset=0, size=None):
        '''
        param buf: the writable buffer that holds the table.
        type buf: bytearray

        param offset: the offset of the table within `buf`.
        type offset: int

        param size: the size of the table in bytes. defaults to the rest of `buf`.
        type size: int
        '''
        view = memoryview(buf)
        if size is None:
            size = len(view) - offset
        self._view = view[offset:offset + size]
        self._offset = offset

    def __len__(self):
        return len(self._view) // FAT_ENTRY_SIZE

    def _entryOffset(self, index):
        off = index * FAT_ENTRY_SIZE
        if index < 0 or off + FAT_ENTRY_SIZE > len(self._view):
            raise IndexError('FAT does not have entry %d' % (index))
        return off

    def getEntry(self, index):
        '''
        get the raw 32 bit value of a table entry.

        rtype: int
        '''
        off = self._entryOffset(index)
        entry = FAT_ENTRY()
        entry.vsParse(bytes(self._view[off:off + FAT_ENTRY_SIZE]))
        return int(entry.Value)

    def setEntry(self, index, value):
        off = self._entryOffset(index)
        if value < 0 or value > FAT_ENTRY_MAX:
            raise ValueError('FAT entry does not fit 32 bits: %x' % (value))

        entry = FAT_ENTRY()
        entry.Value = value
        self._view[off:off + FAT_ENTRY_SIZE] = entry.vsEmit()
        logger.debug('fat: set fat entry: %x %x', index, value)

    def seedReservedEntries(self, media, root_cluster=2):
        '''
        write the entries a newly formatted volume must have:
        the media marker, the end of chain marker, and a single cluster
        chain for the root directory.
        '''
        self.setEntry(0, mediaEntry(media))
        self.setEntry(1, CLUSTER_TYPES.LAST)
        self.setEntry(root_cluster, CLUSTER_TYPES.LAST)

    def release(self):
        self._view.release()

    def __enter__(self):
        return self

    def __exit__(self, exc, valu, tb):
        self.release()
