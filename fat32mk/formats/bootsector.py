'''
FAT32 boot sector structures.

the boot sector is described by a single field table. the table drives
both the vstruct definition and the read/write view over a caller's buffer.
'''
import logging
import collections

import vstruct2.types as v_types


logger = logging.getLogger(__name__)


class IllegalArgumentException(ValueError):
    pass


# number of bytes of sector 0 covered by the BPB and the extended boot record
BOOT_SECTOR_SIZE = 90

# absolute offset of the 0x55 0xAA marker at the end of sector 0
SIGNATURE_OFFSET = 510
SIGNATURE = b'\x55\xAA'

# extended boot signature: the following three fields are present
EXTENDED_BOOT_SIGNATURE = 0x29

# field encodings
FIELD_BYTES = 'bytes'
FIELD_STRING = 'str'
FIELD_UINT = 'uint'


BootSectorField = collections.namedtuple('BootSectorField', ['name', 'offset', 'size', 'kind'])


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
BOOT_SECTOR_FIELDS = (
    BootSectorField('BS_jmpBoot', 0, 3, FIELD_BYTES),
    BootSectorField('BS_OEMName', 3, 8, FIELD_STRING),
    BootSectorField('BPB_BytsPerSec', 11, 2, FIELD_UINT),
    BootSectorField('BPB_SecPerClus', 13, 1, FIELD_UINT),
    BootSectorField('BPB_RsvdSecCnt', 14, 2, FIELD_UINT),
    BootSectorField('BPB_NumFATs', 16, 1, FIELD_UINT),
    BootSectorField('BPB_RootEntCnt', 17, 2, FIELD_UINT),
    BootSectorField('BPB_TotSec16', 19, 2, FIELD_UINT),
    BootSectorField('BPB_Media', 21, 1, FIELD_UINT),
    BootSectorField('BPB_FATSz16', 22, 2, FIELD_UINT),
    BootSectorField('BPB_SecPerTrk', 24, 2, FIELD_UINT),
    BootSectorField('BPB_NumHeads', 26, 2, FIELD_UINT),
    BootSectorField('BPB_HiddSec', 28, 4, FIELD_UINT),
    BootSectorField('BPB_TotSec32', 32, 4, FIELD_UINT),

    # begin FAT32-specific fields
    BootSectorField('BPB_FATSz32', 36, 4, FIELD_UINT),
    BootSectorField('BPB_ExtFlags', 40, 2, FIELD_UINT),
    BootSectorField('BPB_FSVer', 42, 2, FIELD_UINT),
    BootSectorField('BPB_RootClus', 44, 4, FIELD_UINT),
    BootSectorField('BPB_FSInfo', 48, 2, FIELD_UINT),
    BootSectorField('BPB_BkBootSec', 50, 2, FIELD_UINT),
    BootSectorField('BPB_Reserved', 52, 12, FIELD_BYTES),

    # extended boot record
    BootSectorField('BS_DrvNum', 64, 1, FIELD_UINT),
    BootSectorField('BS_Reserved1', 65, 1, FIELD_UINT),
    BootSectorField('BS_BootSig', 66, 1, FIELD_UINT),
    BootSectorField('BS_VolID', 67, 4, FIELD_UINT),
    BootSectorField('BS_VolLab', 71, 11, FIELD_STRING),
    BootSectorField('BS_FilSysType', 82, 8, FIELD_STRING),
)

FIELDS_BY_NAME = {f.name: f for f in BOOT_SECTOR_FIELDS}

_UINT_TYPES = {
    1: v_types.uint8,
    2: v_types.uint16,
    4: v_types.uint32,
}


def _checkFieldTable():
    offset = 0
    for field in BOOT_SECTOR_FIELDS:
        if field.offset != offset:
            raise RuntimeError('boot sector field table gap at %s' % (field.name))
        if field.kind == FIELD_UINT and field.size not in _UINT_TYPES:
            raise RuntimeError('bad integer width for %s' % (field.name))
        offset += field.size
    if offset != BOOT_SECTOR_SIZE:
        raise RuntimeError('boot sector field table is %d bytes' % (offset))


_checkFieldTable()


class BOOT_SECTOR_FAT32(v_types.VStruct):
    '''
    the first 90 bytes of the first logical sector of a FAT32 file system.

    specifies the geometry of the file system, including things like:
      - cluster size
      - locations of the reserved region and the FATs
      - file system label
    '''
    def __init__(self):
        super(BOOT_SECTOR_FAT32, self).__init__()
        # for interpretation of these fields, please see:
        #  https://staff.washington.edu/dittrich/misc/fatgen103.pdf
        for field in BOOT_SECTOR_FIELDS:
            if field.kind == FIELD_UINT:
                setattr(self, field.name, _UINT_TYPES[field.size]())
            else:
                setattr(self, field.name, v_types.vbytes(size=field.size))


def getField(name):
    '''
    get the descriptor of the named boot sector field.

    rtype: BootSectorField
    '''
    try:
        return FIELDS_BY_NAME[name]
    except KeyError:
        raise IllegalArgumentException('unknown boot sector field: %s' % (name))


def encodeField(field, valu):
    '''
    convert a python value into what the vstruct field for `field` accepts.

    strings are ASCII, space padded and truncated to the field width.
    raw byte fields are zero padded, but must not be longer than the field.
    integers must fit the field width.
    '''
    if field.kind == FIELD_STRING:
        if isinstance(valu, str):
            valu = valu.encode('utf-8')
        valu = bytes(valu)
        if not valu.isascii():
            raise IllegalArgumentException('%s must be ASCII' % (field.name))
        valu = valu[:field.size]
        return valu.ljust(field.size, b' ')

    if field.kind == FIELD_BYTES:
        valu = bytes(valu)
        if len(valu) > field.size:
            raise IllegalArgumentException('%s is %d bytes, got %d' % (field.name, field.size, len(valu)))
        return valu.ljust(field.size, b'\x00')

    if not isinstance(valu, int):
        raise IllegalArgumentException('%s must be an integer: %r' % (field.name, valu))
    if valu < 0 or valu >= (1 << (8 * field.size)):
        raise IllegalArgumentException('%s does not fit %d bytes: %d' % (field.name, field.size, valu))
    return valu


class BootSector:
    '''
    typed window onto the 90 byte boot sector region of a buffer.

    the view owns no bytes: every write lands directly in the caller's
    buffer, and only the bytes of the written field are touched.

    example:
      buf = bytearray(512)
      bs = BootSector(buf)
      bs.write('BPB_BytsPerSec', 512)
      bs.BPB_SecPerClus = 1
      assert bs.read('BPB_BytsPerSec') == 512
    '''
    def __init__(self, buf, offset=0):
        '''
        param buf: the writable buffer that holds the boot sector.
        type buf: bytearray

        param offset: the offset of the boot sector within `buf`.
        type offset: int
        '''
        view = memoryview(buf)[offset:offset + BOOT_SECTOR_SIZE]
        if len(view) != BOOT_SECTOR_SIZE:
            raise IllegalArgumentException('buffer too small for a boot sector')
        if view.readonly:
            raise IllegalArgumentException('boot sector buffer must be writable')
        object.__setattr__(self, '_view', view)

    def _parse(self):
        bs = BOOT_SECTOR_FAT32()
        bs.vsParse(bytes(self._view))
        return bs

    def read(self, name):
        '''
        read a field.

        strings are returned as `str` including their padding,
        byte fields as `bytes` and integer fields as `int`.
        '''
        field = getField(name)
        valu = getattr(self._parse(), name)
        if field.kind == FIELD_STRING:
            # sectors from other formatters may hold any byte here
            return bytes(valu).decode('latin-1')
        if field.kind == FIELD_BYTES:
            return bytes(valu)
        return int(valu)

    def write(self, name, valu):
        field = getField(name)
        bs = self._parse()
        setattr(bs, name, encodeField(field, valu))

        end = field.offset + field.size
        self._view[field.offset:end] = bs.vsEmit()[field.offset:end]
        logger.debug('bootsector: set field: %s %r', name, valu)

    def update(self, **fields):
        for name, valu in fields.items():
            self.write(name, valu)

    def items(self):
        '''
        enumerate (name, value) for every field, in on-disk order.
        '''
        for field in BOOT_SECTOR_FIELDS:
            yield field.name, self.read(field.name)

    def release(self):
        self._view.release()

    def __enter__(self):
        return self

    def __exit__(self, exc, valu, tb):
        self.release()

    def __getattr__(self, name):
        if name in FIELDS_BY_NAME:
            return self.read(name)
        raise AttributeError(name)

    def __setattr__(self, name, valu):
        if name in FIELDS_BY_NAME:
            self.write(name, valu)
            return
        object.__setattr__(self, name, valu)
