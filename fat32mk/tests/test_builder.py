import os
import shutil
import logging
import unittest
import tempfile

import fat32mk.builder as builder
import fat32mk.formats.fat as fat
import fat32mk.formats.fsinfo as fsinfo
import fat32mk.formats.bootsector as bootsector


MEGABYTE = builder.MEGABYTE


def ceilSector(n):
    return -(-n // 512) * 512


class GeometryTest(unittest.TestCase):

    def test_down_align(self):
        self.assertEqual(builder.downAlign(0, 512), 0)
        self.assertEqual(builder.downAlign(511, 512), 0)
        self.assertEqual(builder.downAlign(512, 512), 512)
        self.assertEqual(builder.downAlign(80524, 512), 80384)

    def test_default_10mb(self):
        geo = builder.computeGeometry(10 * MEGABYTE)
        self.assertEqual(geo.total_sectors, 20480)
        self.assertEqual(geo.reserved_size, 34 * 512)
        self.assertEqual(geo.cluster_size, 512)
        self.assertEqual(geo.cluster_count, 20131)
        self.assertEqual(geo.fat_size, 80384)
        self.assertEqual(geo.fat_sectors, 157)
        self.assertEqual(geo.fat_offsets, [17408, 17408 + 80384])
        self.assertEqual(geo.data_offset, 17408 + 2 * 80384)

    def test_fat_size_rounds_down(self):
        for size in (1 * MEGABYTE, 4 * MEGABYTE, 10 * MEGABYTE, 10 * MEGABYTE + 300):
            for spc in (1, 2, 8):
                geo = builder.computeGeometry(size, sectors_per_cluster=spc)
                self.assertEqual(geo.fat_size % 512, 0)
                self.assertLessEqual(geo.fat_size, geo.cluster_count * 4)
                self.assertLessEqual(geo.fat_size, ceilSector(geo.cluster_count * 4))

        # 32KB clusters
        geo = builder.computeGeometry(10 * MEGABYTE, sectors_per_cluster=64)
        self.assertEqual(geo.cluster_count, 319)
        self.assertEqual(geo.fat_sectors, 2)

    def test_layout_fits(self):
        for fats in (1, 2, 3):
            geo = builder.computeGeometry(4 * MEGABYTE, fat_count=fats)
            offsets = geo.fat_offsets
            self.assertEqual(len(offsets), fats)
            for a, b in zip(offsets, offsets[1:]):
                self.assertEqual(b, a + geo.fat_size)
            self.assertLessEqual(geo.data_offset, geo.image_size)
            self.assertGreater(geo.data_cluster_count, 0)

    def test_smallest_volume(self):
        # 128 clusters is the least that fills one FAT sector
        size = 34 * 512 + 128 * (512 + 8)
        geo = builder.computeGeometry(size)
        self.assertEqual(geo.fat_sectors, 1)
        self.assertEqual(geo.data_cluster_count, 126)

        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(size - 1)

    def test_invalid_geometry(self):
        # reserved region bigger than the image
        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(16 * 1024, reserved_sector_count=64)
        self.assertEqual(cm.exception.name, 'image_size')

        # reserved region exactly the image
        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(34 * 512)

        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(0)

        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(MEGABYTE, sectors_per_cluster=3)
        self.assertEqual(cm.exception.name, 'sectors_per_cluster')
        self.assertEqual(cm.exception.valu, 3)

        # 64KB clusters
        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(MEGABYTE, sectors_per_cluster=128)

        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(MEGABYTE, sectors_per_cluster=0)

        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(MEGABYTE, reserved_sector_count=0)
        self.assertEqual(cm.exception.name, 'reserved_sector_count')

        with self.assertRaises(builder.GeometryError):
            builder.computeGeometry(MEGABYTE, reserved_sector_count=0x10000)

        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(MEGABYTE, fat_count=0)
        self.assertEqual(cm.exception.name, 'fat_count')

        self.assertTrue(issubclass(builder.GeometryError, ValueError))

    def test_non_integer_geometry(self):
        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(1.5 * MEGABYTE)
        self.assertEqual(cm.exception.name, 'image_size')

        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(MEGABYTE, sectors_per_cluster=1.0)
        self.assertEqual(cm.exception.name, 'sectors_per_cluster')

        with self.assertRaises(builder.GeometryError) as cm:
            builder.computeGeometry(MEGABYTE, fat_count='2')
        self.assertEqual(cm.exception.name, 'fat_count')

    def test_items(self):
        geo = builder.computeGeometry(10 * MEGABYTE)
        items = dict(geo.items())
        self.assertEqual(items['total_sectors'], 20480)
        self.assertEqual(items['fat_sectors'], 157)


class ImageTestCase(unittest.TestCase):

    def assertFormatted(self, buf, geo, media=0xF8):
        self.assertEqual(len(buf), geo.image_size)
        self.assertEqual(buf[510:512], b'\x55\xAA')

        bs = bootsector.BootSector(buf)
        self.assertEqual(bs.BS_jmpBoot, b'\xEB\x58\x90')
        self.assertEqual(bs.BPB_BytsPerSec, 512)
        self.assertEqual(bs.BPB_SecPerClus, geo.sectors_per_cluster)
        self.assertEqual(bs.BPB_RsvdSecCnt, geo.reserved_sector_count)
        self.assertEqual(bs.BPB_NumFATs, geo.fat_count)
        self.assertEqual(bs.BPB_RootEntCnt, 0)
        self.assertEqual(bs.BPB_TotSec16, 0)
        self.assertEqual(bs.BPB_Media, media)
        self.assertEqual(bs.BPB_FATSz16, 0)
        self.assertEqual(bs.BPB_TotSec32, geo.total_sectors)
        self.assertEqual(bs.BPB_FATSz32, geo.fat_sectors)
        self.assertEqual(bs.BPB_RootClus, 2)
        self.assertEqual(bs.BPB_FSInfo, 1)
        self.assertEqual(bs.BPB_BkBootSec, 6)
        self.assertEqual(bs.BPB_Reserved, b'\x00' * 12)
        self.assertEqual(bs.BS_DrvNum, 0x80)
        self.assertEqual(bs.BS_BootSig, 0x29)
        self.assertEqual(bs.BS_FilSysType, 'FAT32   ')
        self.assertLessEqual(bs.BPB_FATSz32 * 512, ceilSector(geo.cluster_count * 4))
        bs.release()

        for offset in geo.fat_offsets:
            table = fat.AllocationTable(buf, offset, geo.fat_size)
            self.assertEqual(len(table), geo.fat_size // 4)
            self.assertEqual(table.getEntry(0), fat.mediaEntry(media))
            self.assertEqual(table.getEntry(1), 0x0FFFFFFF)
            self.assertEqual(table.getEntry(2), 0x0FFFFFFF)
            self.assertEqual(table.getEntry(3), 0)
            table.release()

        # free clusters and the data region are untouched
        start = geo.fat_offsets[0] + 12
        self.assertEqual(buf[start:start + geo.fat_size - 12], bytearray(geo.fat_size - 12))
        tail = len(buf) - geo.data_offset
        self.assertEqual(buf[geo.data_offset:], bytearray(tail))


class ImageBuilderTest(ImageTestCase):

    def test_build_default(self):
        buf = builder.ImageBuilder().build(10 * MEGABYTE)
        self.assertEqual(len(buf), 10485760)
        self.assertFormatted(buf, builder.computeGeometry(10 * MEGABYTE))

        bs = bootsector.BootSector(buf)
        self.assertEqual(bs.BPB_TotSec32, 20480)
        self.assertEqual(bs.BPB_FATSz32, 157)
        self.assertEqual(bs.BS_OEMName, 'FAT32MK ')
        self.assertEqual(bs.BS_VolLab, 'NO NAME    ')
        self.assertEqual(bs.BS_VolID, 0)

        # FAT2 follows FAT1 immediately
        self.assertEqual(buf[17408:17408 + 12], buf[17408 + 80384:17408 + 80384 + 12])

        # only the BPB and the signature are set in sector 0
        self.assertEqual(buf[90:510], bytearray(420))

        # no FSInfo unless asked for
        self.assertEqual(buf[512:17408], bytearray(17408 - 512))

    def test_build_params(self):
        cases = [
            {'size': 1 * MEGABYTE, 'spc': 1, 'rsvd': 32, 'fats': 2},
            {'size': 4 * MEGABYTE, 'spc': 8, 'rsvd': 34, 'fats': 2},
            {'size': 4 * MEGABYTE, 'spc': 1, 'rsvd': 1, 'fats': 1},
            {'size': 2 * MEGABYTE + 100, 'spc': 2, 'rsvd': 34, 'fats': 2},
        ]
        for case in cases:
            mkb = builder.ImageBuilder(sectors_per_cluster=case['spc'],
                                       reserved_sector_count=case['rsvd'],
                                       fat_count=case['fats'])
            buf = mkb.build(case['size'])
            geo = mkb.geometry(case['size'])
            self.assertEqual(len(buf), case['size'])
            self.assertFormatted(buf, geo)

    def test_build_options(self):
        mkb = builder.ImageBuilder(media=0xF0, oem_name='MYOS', volume_label='BOOT', volume_id=0x1234ABCD)
        buf = mkb.build(MEGABYTE)
        self.assertFormatted(buf, mkb.geometry(MEGABYTE), media=0xF0)

        bs = bootsector.BootSector(buf)
        self.assertEqual(bs.BS_OEMName, 'MYOS    ')
        self.assertEqual(bs.BS_VolLab, 'BOOT       ')
        self.assertEqual(bs.BS_VolID, 0x1234ABCD)

    def test_rejects_bad_boot_fields_early(self):
        bad = (
            {'volume_label': '\u00c9T\u00c9'},
            {'oem_name': b'\xff'},
            {'volume_id': -1},
            {'volume_id': 1 << 32},
            {'media': 0x100},
        )
        for params in bad:
            with self.assertRaises(bootsector.IllegalArgumentException, msg=repr(params)):
                builder.ImageBuilder(**params)

    def test_build_is_the_entry_point(self):
        self.assertFalse(hasattr(builder.ImageBuilder, 'assemble'))

        mkb = builder.ImageBuilder()
        buf = mkb.build(MEGABYTE)
        self.assertFormatted(buf, mkb.geometry(MEGABYTE))

        with self.assertRaises(builder.GeometryError):
            mkb.build(MEGABYTE + 1.5)

    def test_build_rejects_small_image(self):
        mkb = builder.ImageBuilder(reserved_sector_count=2048)
        with self.assertRaises(builder.GeometryError):
            mkb.build(MEGABYTE)

    def test_build_fsinfo(self):
        mkb = builder.ImageBuilder(with_fsinfo=True)
        buf = mkb.build(4 * MEGABYTE)
        geo = mkb.geometry(4 * MEGABYTE)

        fsi = fsinfo.parseFSInfo(buf[512:1024])
        self.assertEqual(fsi.FSI_LeadSig, fsinfo.FSI_LEAD_SIG)
        self.assertEqual(fsi.FSI_Free_Count, geo.data_cluster_count - 1)
        self.assertEqual(fsi.FSI_Nxt_Free, 3)

        self.assertEqual(buf[6 * 512:7 * 512], buf[0:512])
        self.assertEqual(buf[7 * 512:8 * 512], buf[512:1024])
        self.assertEqual(buf[1024:6 * 512], bytearray(4 * 512))

        # the rest of the layout is the same as without FSInfo
        plain = builder.ImageBuilder().build(4 * MEGABYTE)
        self.assertEqual(buf[:512], plain[:512])
        self.assertEqual(buf[geo.reserved_size:], plain[geo.reserved_size:])

    def test_fsinfo_needs_reserved_sectors(self):
        mkb = builder.ImageBuilder(with_fsinfo=True, reserved_sector_count=7)
        with self.assertRaises(builder.GeometryError) as cm:
            mkb.build(MEGABYTE)
        self.assertEqual(cm.exception.name, 'reserved_sector_count')

        buf = builder.ImageBuilder(with_fsinfo=True, reserved_sector_count=8).build(MEGABYTE)
        self.assertEqual(len(buf), MEGABYTE)

    def test_fsinfo_corrupt(self):
        with self.assertRaises(fsinfo.CorruptFSInfoError):
            fsinfo.parseFSInfo(bytes(512))

        # only the trail signature is wrong
        byts = bytearray(fsinfo.newFSInfo().vsEmit())
        byts[-1] = 0
        with self.assertRaises(fsinfo.CorruptFSInfoError):
            fsinfo.parseFSInfo(byts)

        fsi = fsinfo.parseFSInfo(fsinfo.newFSInfo(free_count=5).vsEmit())
        self.assertEqual(fsi.FSI_Free_Count, 5)
        self.assertEqual(fsi.FSI_Nxt_Free, fsinfo.FSI_UNKNOWN)


class SaveImageTest(ImageTestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_save(self):
        path = os.path.join(self.tmpdir, 'disk.img')
        builder.saveImage(path, bytearray(b'\x01\x02' * 512))
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), b'\x01\x02' * 512)

    def test_save_bad_path(self):
        path = os.path.join(self.tmpdir, 'nope', 'disk.img')
        with self.assertRaises(OSError):
            builder.saveImage(path, bytearray(512))
        self.assertFalse(os.path.exists(path))

    def test_mkfat32(self):
        path = os.path.join(self.tmpdir, 'disk.img')
        geo = builder.mkfat32(path, size_mb=2)
        self.assertEqual(os.path.getsize(path), 2 * MEGABYTE)
        self.assertEqual(geo.total_sectors, 4096)

        with open(path, 'rb') as f:
            buf = bytearray(f.read())
        self.assertFormatted(buf, geo)

    def test_mkfat32_invalid(self):
        path = os.path.join(self.tmpdir, 'disk.img')
        with self.assertRaises(builder.GeometryError):
            builder.mkfat32(path, size_mb=0)
        with self.assertRaises(builder.GeometryError):
            builder.mkfat32(path, size_mb=1, reserved_sector_count=4096)
        with self.assertRaises(builder.GeometryError):
            builder.mkfat32(path, size_mb=1.5)
        with self.assertRaises(bootsector.IllegalArgumentException):
            builder.mkfat32(path, size_mb=1, volume_label='\u00c9T\u00c9')
        self.assertFalse(os.path.exists(path))


def test():
    logging.basicConfig(level=logging.DEBUG)
    try:
        unittest.main()
    except SystemExit:
        pass


if __name__ == '__main__':
    test()
