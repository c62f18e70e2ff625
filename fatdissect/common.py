'''
Output helpers shared by the tools.
'''
import collections


def colify(rows, titles=None):
    '''
    Generate column text output from rows of strings.

    Example:

        rows = [
            ('/BOOT.INI', '211'),
            ('/IO.SYS', '40774')
        ]

        print( colify( rows, titles=('path','size') ))

    '''
    colcount = max([len(r) for r in rows] + [len(titles or ())])

    colsizes = collections.defaultdict(int)
    for row in ([titles] if titles else []) + list(rows):
        for i, cell in enumerate(row):
            colsizes[i] = max(colsizes[i], len(cell))

    width = sum(colsizes.values()) + (3 * (colcount - 1))

    def fmt(row):
        return ' | '.join(row[i].ljust(colsizes[i]) for i in range(len(row))).rstrip()

    lines = ['-' * width]
    if titles:
        lines.append(fmt(titles))
        lines.append('-' * width)

    lines.extend(fmt(row) for row in rows)
    lines.append('-' * width)

    return '\n'.join(lines)
