import curses

from .session import Notice, State

KEY_ESC = 27
KEY_QUIT = "quit"

CP_HEADER = 1
CP_ACCENT = 2
CP_TEXT = 3
CP_WARN = 4
CP_OK = 5

HEADERS = ["PROTO", "PORT", "PROCESS", "PID", "USER", "ADDRESS", "STATE"]
WIDTHS = [6, 7, 18, 8, 12, 28, 10]


def init_colors():
    if not curses.has_colors():
        return
    try:
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(CP_HEADER, curses.COLOR_CYAN, -1)
        curses.init_pair(CP_ACCENT, curses.COLOR_MAGENTA, -1)
        curses.init_pair(CP_TEXT, -1, -1)
        curses.init_pair(CP_WARN, curses.COLOR_RED, -1)
        curses.init_pair(CP_OK, curses.COLOR_GREEN, -1)
    except curses.error:
        pass


def format_row(record):
    cells = [
        record.protocol.upper(),
        str(record.port),
        record.process or "-",
        str(record.pid),
        record.user or "-",
        record.address or "-",
        record.state or "-",
    ]
    return "".join(c[:w - 1].ljust(w) for c, w in zip(cells, WIDTHS))


def _put(win, y, x, text, attr=0):
    h, w = win.getmaxyx()
    if y < 0 or y >= h or x >= w - 1:
        return
    try:
        win.addstr(y, x, text[:w - x - 1], attr)
    except curses.error:
        pass


def draw_table(win, session, offset):
    h, w = win.getmaxyx()
    header = "".join(t.ljust(wd) for t, wd in zip(HEADERS, WIDTHS))
    _put(win, 0, 1, header, curses.color_pair(CP_HEADER) | curses.A_BOLD)
    rows = session.visible()
    if not rows and session.state == State.READY:
        _put(win, 2, 1, "No ports found. Press [r] to refresh.", curses.color_pair(CP_TEXT))
    for i in range(max(0, h - 3)):
        idx = offset + i
        if idx >= len(rows):
            break
        attr = curses.color_pair(CP_TEXT)
        if idx == session.selected:
            attr = curses.color_pair(CP_ACCENT) | curses.A_REVERSE
        _put(win, i + 1, 1, format_row(rows[idx]).ljust(w - 2), attr)


def draw_status_bar(win, session):
    h, w = win.getmaxyx()
    if session.error:
        _put(win, h - 1, 0, f" ERROR: {session.error} ".ljust(w - 1), curses.color_pair(CP_WARN) | curses.A_BOLD)
    elif session.notice is not None:
        color = {Notice.SUCCESS: CP_OK, Notice.ERROR: CP_WARN}.get(session.notice.kind, CP_ACCENT)
        _put(win, h - 1, 0, f" {session.notice.message} ".ljust(w - 1), curses.color_pair(color))
    elif session.searching or session.query:
        cursor = "_" if session.searching else ""
        hint = "[Esc] clear search"
        text = f" /{session.query}{cursor}"
        _put(win, h - 1, 0, text.ljust(max(0, w - len(hint) - 2)) + hint, curses.color_pair(CP_ACCENT))
    else:
        hint = "[Enter] kill  [/] search  [r] refresh  [q] quit"
        _put(win, h - 1, 0, f" {session.status}".ljust(max(0, w - len(hint) - 2)) + hint, curses.color_pair(CP_TEXT))


def draw_confirm_modal(stdscr, session):
    target = session.confirm.target
    h, w = stdscr.getmaxyx()
    win_h, win_w = 6, min(60, w - 4)
    win = curses.newwin(win_h, win_w, (h - win_h) // 2, (w - win_w) // 2)
    win.box()
    _put(win, 1, 2, f"Kill {target.label}?", curses.color_pair(CP_HEADER) | curses.A_BOLD)
    _put(win, 2, 2, f"{target.protocol.upper()} {target.address}:{target.port}", curses.color_pair(CP_TEXT))
    if session.kill_pending:
        _put(win, 4, 2, "Terminating...", curses.color_pair(CP_ACCENT))
    else:
        _put(win, 4, 2, "[y] Yes    [n] No", curses.color_pair(CP_TEXT))
    win.noutrefresh()


def scroll_offset(selected, offset, visible_rows):
    if visible_rows <= 0:
        return 0
    if selected < offset:
        return selected
    if selected >= offset + visible_rows:
        return selected - visible_rows + 1
    return offset


def draw(stdscr, session, offset):
    stdscr.erase()
    h, _ = stdscr.getmaxyx()
    offset = scroll_offset(session.selected, offset, h - 3)
    draw_table(stdscr, session, offset)
    draw_status_bar(stdscr, session)
    stdscr.noutrefresh()
    if session.state == State.CONFIRMING and session.confirm is not None:
        draw_confirm_modal(stdscr, session)
    curses.doupdate()
    return offset


def handle_search_key(session, k):
    if k == KEY_ESC:
        session.clear_search()
    elif k in (10, curses.KEY_ENTER):
        session.finish_search()
    elif k in (curses.KEY_BACKSPACE, 127, 8):
        session.set_query(session.query[:-1])
    elif k == curses.KEY_UP:
        session.move(-1)
    elif k == curses.KEY_DOWN:
        session.move(1)
    elif 32 <= k < 127:
        session.set_query(session.query + chr(k))


def handle_key(session, k):
    """Translate one key press into a session action. Returns KEY_QUIT to exit."""
    if k == -1:
        return None
    if session.state == State.CONFIRMING:
        if k in (ord('y'), ord('Y'), 10, curses.KEY_ENTER):
            session.confirm_kill()
        elif k in (ord('n'), ord('N'), KEY_ESC):
            session.cancel_kill()
        return None

    if k == 3:
        return KEY_QUIT
    if session.searching:
        handle_search_key(session, k)
        return None

    if k == ord('q'):
        return KEY_QUIT
    if k == KEY_ESC:
        if session.state == State.ERROR:
            session.dismiss_error()
        elif not session.visible():
            # nothing left to show: drop the search and reload everything
            session.clear_search()
            session.refresh()
        elif session.query:
            session.clear_search()
    elif k == ord('/'):
        session.start_search()
    elif k == ord('r'):
        session.refresh()
    elif k in (curses.KEY_UP, ord('k')):
        session.move(-1)
    elif k in (curses.KEY_DOWN, ord('j')):
        session.move(1)
    elif k in (10, curses.KEY_ENTER, ord('d')):
        session.request_kill()
    return None
