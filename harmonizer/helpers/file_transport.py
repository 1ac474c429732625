import asyncio
import time
from pathlib import Path

from watchdog.events import PatternMatchingEventHandler
from watchdog.observers import Observer


class FileWatcher:
    """Watches a landing directory (recursively) and hands each landed file to a coroutine."""

    def __init__(self, inbox: str, glob: str, on_file_async, loop: asyncio.AbstractEventLoop):
        self.inbox = Path(inbox)
        self.inbox.mkdir(parents=True, exist_ok=True)
        self.loop = loop
        self.on_file_async = on_file_async
        self.handler = PatternMatchingEventHandler(patterns=[glob], ignore_directories=True)

        def _submit(path: Path):
            # Si el archivo ya no existe, no hay nada que leer (pudo haberse movido)
            if not path.exists():
                return
            # Espera breve hasta que termine de escribirse
            for _ in range(10):
                try:
                    with path.open("rb"):
                        break
                except FileNotFoundError:
                    return
                except OSError:
                    time.sleep(0.05)

            # Ejecutar la corrutina en el loop principal (thread-safe)
            asyncio.run_coroutine_threadsafe(self.on_file_async(str(path)), self.loop)

        # Usa src en created/modified, dest en moved. Un mismo archivo puede llegar dos
        # veces; el reenvío es idempotente en el store.
        self.handler.on_created = lambda e: _submit(Path(e.src_path))
        self.handler.on_modified = lambda e: _submit(Path(e.src_path))
        self.handler.on_moved = lambda e: _submit(Path(e.dest_path))

        self.observer = Observer()

    def start(self):
        self.observer.schedule(self.handler, str(self.inbox), recursive=True)
        self.observer.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()
