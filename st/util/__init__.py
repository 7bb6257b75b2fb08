from st.util.misc import now_iso, today_iso, format_hms, parse_hms
