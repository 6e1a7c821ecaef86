'''
FAT32 FSInfo sector.
'''
import vstruct2.types as v_types


FSI_LEAD_SIG = 0x41615252
FSI_STRUC_SIG = 0x61417272
FSI_TRAIL_SIG = 0xAA550000

# value of FSI_Free_Count and FSI_Nxt_Free when the hint is not known
FSI_UNKNOWN = 0xFFFFFFFF


class CorruptFSInfoError(Exception):
    pass


# via: https://staff.washington.edu/dittrich/misc/fatgen103.pdf
class FS_INFO(v_types.VStruct):
    '''
    provides hints to the file system driver that help optimize performance.
    these values *may* be incorrect, and drivers should continue to function.
    '''
    def __init__(self):
        super(FS_INFO, self).__init__()
        self.FSI_LeadSig = v_types.uint32()
        self.FSI_Reserved1 = v_types.vbytes(size=480)
        self.FSI_StrucSig = v_types.uint32()
        self.FSI_Free_Count = v_types.uint32()
        self.FSI_Nxt_Free = v_types.uint32()
        self.FSI_Reserved2 = v_types.vbytes(size=12)
        self.FSI_TrailSig = v_types.uint32()

    def validate(self):
        if self.FSI_LeadSig != FSI_LEAD_SIG:
            raise CorruptFSInfoError('invalid FS_INFO LeadSig')
        if self.FSI_StrucSig != FSI_STRUC_SIG:
            raise CorruptFSInfoError('invalid FS_INFO StrucSig')
        if self.FSI_TrailSig != FSI_TRAIL_SIG:
            raise CorruptFSInfoError('invalid FS_INFO TrailSig')


def newFSInfo(free_count=FSI_UNKNOWN, next_free=FSI_UNKNOWN):
    '''
    build a signed FSInfo sector.

    rtype: FS_INFO
    '''
    fsi = FS_INFO()
    fsi.FSI_LeadSig = FSI_LEAD_SIG
    fsi.FSI_StrucSig = FSI_STRUC_SIG
    fsi.FSI_Free_Count = free_count
    fsi.FSI_Nxt_Free = next_free
    fsi.FSI_TrailSig = FSI_TRAIL_SIG
    return fsi


def parseFSInfo(byts):
    '''
    parse an FSInfo sector and check its signatures.
    raises CorruptFSInfoError if a signature is wrong.

    rtype: FS_INFO
    '''
    fsi = FS_INFO()
    fsi.vsParse(bytes(byts))
    fsi.validate()
    return fsi
