HTML = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>TCP Connections</title>
  <style>
    body { background:#14181d; color:#e8eaed; font-family: ui-sans-serif,system-ui,Segoe UI,Arial; margin: 1em; }
    #bar { display:flex; gap:.5em; align-items:center; margin-bottom:.6em; }
    #bar button.on { background:#3489eb; color:#fff; }
    #fatal { display:none; background:#e84a5f; color:#fff; padding:.4em .8em; border-radius:6px; margin-bottom:.6em; }
    table { border-collapse: collapse; width: 100%; font-family: ui-monospace,monospace; font-size: 13px; }
    th, td { padding: 2px 8px; border-bottom: 1px solid #2a2f36; text-align:left; white-space:nowrap; }
    th { position: sticky; top: 0; background:#1c2128; }
    tr.pending_removal td { color: rgba(200,200,200,0.55); font-style: italic; }
    #status { color:#9aa0a6; margin-left:auto; }
  </style>
</head>
<body>
  <h2>TCP Connections (Live)</h2>
  <div id="fatal"></div>
  <div id="bar">
    <button id="pause">Pause</button>
    <button id="capture">Record</button>
    <button id="owners">Display names</button>
    <button id="clear">Clear closed</button>
    <a href="/api/export"><button>Export</button></a>
    <input id="filter" placeholder="filter" size="30"/>
    <span id="status"></span>
  </div>
  <table>
    <thead><tr>
      <th>Proto</th><th>Local address</th><th>Port</th><th>Remote address</th><th>Port</th>
      <th>State</th><th>PID</th><th>Process</th><th>User</th><th>Tx</th><th>Rx</th>
    </tr></thead>
    <tbody id="rows"></tbody>
  </table>

  <script>
  (function(){
    let lastVersion = -1, lastFilter = "";
    const el = id => document.getElementById(id);

    function post(path, body){
      return fetch(path, {method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(body)})
        .then(r => r.json()).then(() => refresh(true)).catch(e => console.error(e));
    }

    function cell(v){ const td = document.createElement('td'); td.textContent = (v === null || v === undefined) ? '' : v; return td; }

    function render(rows){
      const tbody = el('rows');
      const frag = document.createDocumentFragment();
      rows.forEach(r => {
        const tr = document.createElement('tr');
        tr.className = r.marker;
        [r.proto, r.laddr, r.lport, r.raddr, r.rport, r.state, r.pid, r.name, r.user, r.tx_queue, r.rx_queue]
          .forEach(v => tr.appendChild(cell(v)));
        frag.appendChild(tr);
      });
      tbody.replaceChildren(frag);
    }

    function renderStatus(s){
      el('pause').classList.toggle('on', s.paused);
      el('capture').classList.toggle('on', s.capturing);
      el('owners').classList.toggle('on', s.resolve_owners);
      el('clear').disabled = s.capturing || !s.pending_removal;
      let txt = s.records + ' connections';
      if (s.pending_removal) txt += ', ' + s.pending_removal + ' closed';
      if (s.resolver_error) txt += ' | owners: ' + s.resolver_error;
      el('status').textContent = txt;
    }

    async function refresh(force){
      const filter = el('filter').value.trim();
      try{
        const r = await fetch('/api/connections?filter=' + encodeURIComponent(filter));
        const data = await r.json();
        renderStatus(data.status);
        if (data.fatal){ el('fatal').style.display = 'block'; el('fatal').textContent = data.fatal; }
        if (force || data.version !== lastVersion || filter !== lastFilter){
          render(data.rows);
          lastVersion = data.version; lastFilter = filter;
        }
      }catch(e){ console.error(e); }
    }

    el('pause').onclick   = () => post('/api/pause', {paused: !el('pause').classList.contains('on')});
    el('capture').onclick = () => post('/api/capture', {capturing: !el('capture').classList.contains('on')});
    el('owners').onclick  = () => post('/api/resolve_owners', {enabled: !el('owners').classList.contains('on')});
    el('clear').onclick   = () => post('/api/delete', {all_stale: true});
    el('filter').oninput  = () => refresh(true);

    setInterval(refresh, 1000);
    refresh(true);
  })();
  </script>
</body>
</html>
"""

def render_html(udp_enabled: bool) -> str:
    title = "TCP/UDP Connections" if udp_enabled else "TCP Connections"
    html = HTML.replace("<title>TCP Connections</title>", f"<title>{title}</title>")
    html = html.replace(">TCP Connections (Live)<", f">{title} (Live)<")
    return html
