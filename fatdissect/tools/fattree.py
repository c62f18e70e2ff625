import sys
import logging
import argparse

import fatdissect.formats.fat as d_fat

from fatdissect.common import colify
from fatdissect.image import ImageReader
from fatdissect.errors import FatDirectoryError


def getRows(root):
    rows = []
    for path, entry in root.walk():
        if entry.is_directory:
            path += '/'
        modified = str(entry.modified) if entry.modified is not None else ''
        attrs = ','.join(sorted(entry.attribute_names))
        rows.append((path, str(entry.size), attrs, modified))
    return rows


def main(argv):

    p = argparse.ArgumentParser(description='list the directory tree of FAT file system images')
    p.add_argument('--fat', type=int, required=True, choices=(12, 16, 32), help='the FAT variant of the file system')
    p.add_argument('--offset', type=lambda x: int(x, 0), default=0, help='byte offset of the file system in the image')
    p.add_argument('--warnings', default=False, action='store_true', help='list problems found while decoding')
    p.add_argument('-v', '--verbose', default=False, action='store_true', help='enable debug logging')
    p.add_argument('images', nargs='+', help='FAT file system images')

    args = p.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.ERROR)

    ret = 0
    for filename in args.images:
        try:
            with open(filename, 'rb') as fd:
                image = ImageReader(fd)
                layout = d_fat.FatLayout(image, args.fat, off=args.offset)
                root = layout.getDirectoryTree()
        except (OSError, FatDirectoryError) as e:
            print('%s: %s' % (filename, e), file=sys.stderr)
            ret = 1
            continue

        print('listing: %s (FAT%d, cluster size: %d)' % (filename, args.fat, layout.bytes_per_cluster))

        rows = getRows(root)
        if rows:
            titles = ('Path', 'Size', 'Attributes', 'Modified')
            print(colify(rows, titles=titles))

        if args.warnings:
            for path, entry in root.walk():
                for w in entry.warnings:
                    print('%s: %s: %s' % (path, type(w).__name__, w))

    return ret


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
