'''
FAT12/16/32 directory structure decoding.
'''
__version__ = (0, 1, 0)
