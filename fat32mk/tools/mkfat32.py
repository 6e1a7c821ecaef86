import sys
import logging
import argparse

import fat32mk.builder as builder


logger = logging.getLogger(__name__)


def positiveInt(valu):
    try:
        n = int(valu)
    except ValueError:
        raise argparse.ArgumentTypeError('not an integer: %r' % (valu))
    if n <= 0:
        raise argparse.ArgumentTypeError('must be positive: %d' % (n))
    return n


def main(argv):

    p = argparse.ArgumentParser(prog='fat32mk', description='FAT32 image maker')
    p.add_argument('imgpath', help='dest image location')
    p.add_argument('-m', '--mb', type=positiveInt, default=builder.DEFAULT_SIZE_MB, help='image size in mb')
    p.add_argument('--label', default=builder.DEFAULT_VOLUME_LABEL, help='volume label (11 chars max)')
    p.add_argument('--oem', default=builder.DEFAULT_OEM_NAME, help='OEM name (8 chars max)')
    p.add_argument('--fsinfo', default=False, action='store_true', help='write an FSInfo sector and a backup boot sector')
    p.add_argument('--geometry', default=False, action='store_true', help='print the computed volume geometry')
    p.add_argument('-v', '--verbose', default=False, action='store_true', help='debug logging')

    args = p.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(message)s')

    size = args.mb * builder.MEGABYTE
    try:
        mkb = builder.ImageBuilder(oem_name=args.oem,
                                   volume_label=args.label,
                                   with_fsinfo=args.fsinfo)
        geo = mkb.geometry(size)
    except ValueError as e:
        logger.error('invalid parameters: %s', e)
        return 1

    if args.geometry:
        for name, valu in geo.items():
            print('%-24s %s' % (name, valu))

    try:
        buf = mkb.build(size)
        logger.info('write %s %dMB', args.imgpath, args.mb)
        builder.saveImage(args.imgpath, buf)
    except OSError as e:
        logger.error('failed to write %s: %s', args.imgpath, e)
        return 1

    return 0


def _main():
    return main(sys.argv[1:])


if __name__ == '__main__':
    sys.exit(_main())
