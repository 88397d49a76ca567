"""rawscan core package.

Modules:
- traversal: directory walking and raw-file candidate discovery
- classifier: filename heuristics (dicom / pfile / other) and globs
- staging: scratch, decompressed local copies with scoped cleanup
- raw_image: RawImageFile values and the DICOM header reader
- dataset: RawImageDataset aggregation and structured records
- recon: to3d reconstruction commands per dataset type
- thumbnails: lazy dataset thumbnails
- scanner: visit-level scanning and persistence
- database / repository / models: SQLModel persistence
- config: INI parsing and config object
"""
