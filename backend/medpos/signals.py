# Overview: Signals emitted for collaborators (accounting export, shift reports, UI refresh).

from blinker import Namespace

_signals = Namespace()

# sender: the Flask app; kwargs: sale (Sale)
sale_committed = _signals.signal("sale-committed")

# sender: the Flask app; kwargs: session (DrawerSession), report (dict)
shift_closed = _signals.signal("shift-closed")

# sender: the OfflineQueue; kwargs: result (DrainResult)
queue_drained = _signals.signal("queue-drained")
