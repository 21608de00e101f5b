"""
Client for NFS version 3 exports that works with paths instead of file handles.

The central class is nfsvolume.target.Target, which resolves paths into file handles
with the help of a time-bounded cache of directory lookups, lists directories across as
many READDIRPLUS calls as needed, and creates and deletes files and directories,
including the recursive deletion of whole trees.

The protocol layers underneath it are small: an XDR codec (xdr), an ONC RPC client over
TCP (rpc) and the part of the MOUNT protocol (mount) needed to obtain the root handle of
an export.
"""
