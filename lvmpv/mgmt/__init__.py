"""Work queue and controllers for LVM volumes, snapshots and nodes."""