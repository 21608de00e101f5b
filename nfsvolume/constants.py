"""Module defining various global constants."""

# nfsvolume version
VERSION = "1.0.0"

# Special exit code for when a command fails.
ERROR_CODE = 1

# ONC RPC (RFC 5531)
RPC_VERSION = 2

# Procedure 0 of every program does nothing and is used to check availability
NULLPROC = 0

# Largest reply record that is accepted, well above what READDIRPLUS asks for
RPC_MAX_RECORD_SIZE = 4 * 1024 * 1024

# Portmapper (RFC 1833)
PMAP_PORT = 111
PMAP_PROG = 100000
PMAP_VERS = 2
PMAPPROC_GETPORT = 3
IPPROTO_TCP = 6

# MOUNT version 3 (RFC 1813, appendix I)
MOUNT3_PROG = 100005
MOUNT3_VERS = 3
MOUNTPROC3_MNT = 1
MOUNTPROC3_UMNT = 3

# NFS version 3 (RFC 1813)
NFS3_PROG = 100003
NFS3_VERS = 3

NFSPROC3_LOOKUP = 3
NFSPROC3_CREATE = 8
NFSPROC3_MKDIR = 9
NFSPROC3_REMOVE = 12
NFSPROC3_RMDIR = 13
NFSPROC3_READDIRPLUS = 17
NFSPROC3_FSINFO = 19

# Size hints sent with every READDIRPLUS call. dircount bounds the bytes of
# directory information (names and cookies), maxcount the whole reply.
READDIRPLUS_DIRCOUNT = 512
READDIRPLUS_MAXCOUNT = 4096

# Directory lookup cache
DEFAULT_ENTRY_TIMEOUT = 60.0
DEFAULT_SWEEP_INTERVAL = 1.0
DEFAULT_SWEEP_LIMIT = 1000
