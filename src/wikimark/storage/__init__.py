"""Git-compatible page storage.

Layout of the bare repository (readable by git itself):
    <repo>/
    ├── HEAD                     # "ref: refs/heads/master"
    ├── config
    ├── description
    ├── objects/
    │   └── ce/013625030b...    # zlib("<type> <size>\\0" + body), named by SHA-1
    ├── refs/
    │   ├── heads/master        # branch head commit id (the only mutable state)
    │   └── tags/
    └── packed-refs              # optional, read-only fallback for refs

Objects are written once and never rewritten. Packfiles are not read.
"""
