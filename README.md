# airsane

Building blocks for a small HTTP daemon:

- `airsane.message`: HTTP request parsing (`Request`) and response writing
  (`Response`, with identity or chunked transfer encoding through
  `ChunkedWriter`), plus the helpers `status_reason`, `file_extension`,
  `to_relative_url` and `url_decode`.
- `airsane.webpage`: a small HTML builder (`Element`, `Br`, `Heading`,
  `Paragraph`, `List`, `Anchor`, `FormField`, `FormInput`, `FormSelect`)
  and the `WebPage` base class. `WebPage` wraps the body that a subclass
  writes in `on_render()` in a complete HTML document and sends it.
- `airsane.errorpage`: `ErrorPage`, an HTML page for an HTTP error status
  that shows the offending request.
- `airsane.accessfile`: `AccessFile` and `AccessRule`. These are
  `allow`/`deny` rules by IP network or by local interface, read from a file.
- `airsane.server`: `HttpServer`, a threaded server. It listens on all
  addresses of one interface, on all interfaces, or on a Unix socket.
- `airsane.netnotifier`: `NetworkHotplugNotifier`, which reports IP
  addresses that appear or disappear. It uses Linux netlink sockets.

## Installation

    pip install .

## Serving requests

Subclass `HttpServer` and override `on_request`:

```python
from airsane.accessfile import AccessFile
from airsane.server import HttpServer


class Hello(HttpServer):
    def on_request(self, request, response):
        if request.method == "GET" and request.uri == "/":
            response.set_header("content-type", "text/plain")
            response.send_with_content("hello\n")


server = Hello()
server.set_port(8090)
server.apply_access_file(AccessFile("/etc/airsane/access.conf"))
server.run()
```

The server listens on port 8080 of all interfaces by default. You can change
this in three ways:

- `set_interface_name(name)` or `set_interface_index(index)` chooses the interface.
- `set_unix_socket(path)` listens on a Unix socket instead. The socket file gets mode `0660`.
- `set_backlog(n)` sets the listen backlog.

Each accepted connection is handled in its own thread, and one request is served per connection:

- A malformed request gets a 400 error page.
- A request that `on_request` leaves unanswered gets a 404 error page.

The server writes one line per request in Apache combined log format to `server.access_log`. That is `sys.stdout` by default; set it to `None` to turn the log off.

`run()` blocks until another thread calls `server.terminate(status)`. It returns `False` if listening failed. After it returns, `termination_status` and `last_error` tell you how it ended. `server.listening` is a `threading.Event` that is set while the sockets are open.

### Streaming and chunked responses

`response.send()` sends the headers without a content length and returns a stream for the body. Setting the `transfer-encoding` header to `chunked` first makes that stream a `ChunkedWriter`. Using the response as a context manager writes the final chunk on exit. Any other encoding besides `identity` raises `ValueError`.

### HTML pages

```python
from airsane.webpage import Heading, Paragraph, WebPage


class Status(WebPage):
    def on_render(self):
        self.out.write(f"{Heading(1).add_text(self.title)}\n")
        self.out.write(str(Paragraph().add_text("all is well")))


Status().set_title("Status").render(request, response)
```

## Access rules

Each line that is not empty and does not start with `#` is one rule. Rules are checked in order, and the first rule that matches decides:

- An empty rule list allows everyone.
- If there are rules and none of them matches, access is denied.
- Lines that cannot be parsed are skipped and recorded in `AccessFile.errors`.

    # local networks only
    allow 192.168.1.0/24
    allow ::1
    allow local on eth0
    deny 0.0.0.0/0

`local on <interface>` matches the networks configured on that interface, and `local on *` matches those of every interface.

Clients on a Unix socket have no IP address. No rule matches them, so they are denied whenever rules exist.

## Network address notification

```python
from airsane.netnotifier import Event, NetworkHotplugNotifier


class Watcher(NetworkHotplugNotifier):
    def on_hotplug_event(self, event):
        if event is Event.ADDRESS_ARRIVED:
            print("new address")


with Watcher():
    ...
```

`start()` raises `OSError` where netlink sockets are not available. `parse_netlink_messages(data)` decodes address messages from a raw buffer, and `process(data)` feeds such a buffer to the notifier.

## What this package does not do

It is a library only:

- It installs no command-line program.
- It does not talk to scanners or other devices.
- It does not announce services over mDNS/DNS-SD.

The HTTP support is limited to one request per connection, without keep-alive or TLS.

## Running the tests

    pip install .[test]
    pytest