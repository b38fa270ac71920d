"""Service Worker JavaScript for offline support.

The worker keeps three caches:
- MANIFEST: the resource manifest of the worker version that last activated
- TEMP: the application shell, downloaded during install
- CACHE_NAME: the live content cache served by the fetch handler

Resource hashes are embedded in the script itself, so any content change
produces a byte-different worker and the browser installs it as an update.
"""

import json
from enum import Enum

from ..config import NONE_WORKER, OFFLINE_FIRST


class ServiceWorkerStrategy(Enum):
    """Caching strategy for the generated service worker."""

    # Download the application shell eagerly and everything else lazily,
    # preferring the cached copy.
    OFFLINE_FIRST = OFFLINE_FIRST
    # Do not generate a service worker.
    NONE = NONE_WORKER


def strategy_from_string(value: str | None) -> ServiceWorkerStrategy:
    """Parse a strategy define. Anything but ``none`` means offline-first."""
    if value == NONE_WORKER:
        return ServiceWorkerStrategy.NONE
    return ServiceWorkerStrategy.OFFLINE_FIRST


def _render_resources(resources: dict[str, str]) -> str:
    return ",\n".join(f"  {json.dumps(url)}: {json.dumps(digest)}" for url, digest in resources.items())


def _render_core(core: list[str]) -> str:
    return ",\n".join(f"  {json.dumps(url)}" for url in core)


def generate_service_worker(
    resources: dict[str, str],
    core: list[str],
    strategy: ServiceWorkerStrategy = ServiceWorkerStrategy.OFFLINE_FIRST,
) -> str:
    """Render the service worker script.

    Args:
        resources: Relative URL -> content hash for every cached file.
        core: URLs that must be downloaded before the worker can activate.
        strategy: Caching strategy; NONE yields an empty script.

    Returns:
        The script text, or an empty string for ServiceWorkerStrategy.NONE.
    """
    if strategy is ServiceWorkerStrategy.NONE:
        return ""

    return f"""'use strict';
const MANIFEST = 'flutter-app-manifest';
const TEMP = 'flutter-temp-cache';
const CACHE_NAME = 'flutter-app-cache';
const RESOURCES = {{
{_render_resources(resources)}
}};

// The application shell files that are downloaded before a service worker can
// start.
const CORE = [
{_render_core(core)}
];

// Map a request URL onto a RESOURCES key: strip the origin and the leading
// slash, drop a cache-busting ?v= query, and send the site root to "/".
function resourceKey(url) {{
  var origin = self.location.origin;
  var key = url.substring(origin.length + 1);
  if (key.indexOf('?v=') != -1) {{
    key = key.split('?v=')[0];
  }}
  if (url == origin || url.startsWith(origin + '/#') || key == '') {{
    key = '/';
  }}
  return key;
}}

// During install, the TEMP cache is populated with the application shell files.
self.addEventListener("install", (event) => {{
  self.skipWaiting();
  return event.waitUntil(
    caches.open(TEMP).then((cache) => {{
      return cache.addAll(
        CORE.map((value) => new Request(value, {{'cache': 'reload'}})));
    }})
  );
}});

// During activate, the cache is populated with the temp files downloaded in
// install. If this service worker is upgrading from one with a saved
// MANIFEST, then use this to retain unchanged resource files.
self.addEventListener("activate", function(event) {{
  return event.waitUntil(async function() {{
    try {{
      var contentCache = await caches.open(CACHE_NAME);
      var tempCache = await caches.open(TEMP);
      var manifestCache = await caches.open(MANIFEST);
      var manifest = await manifestCache.match('manifest');
      // When there is no prior manifest, clear the entire cache.
      if (!manifest) {{
        await caches.delete(CACHE_NAME);
        contentCache = await caches.open(CACHE_NAME);
        for (var request of await tempCache.keys()) {{
          var response = await tempCache.match(request);
          await contentCache.put(request, response);
        }}
        await caches.delete(TEMP);
        // Save the manifest to make future upgrades efficient.
        await manifestCache.put('manifest', new Response(JSON.stringify(RESOURCES)));
        return;
      }}
      var oldManifest = await manifest.json();
      for (var request of await contentCache.keys()) {{
        var key = resourceKey(request.url);
        // If a resource from the old manifest is not in the new cache, or if
        // the hash has changed, delete it. Otherwise the resource is left
        // in the cache and can be reused by the new service worker.
        if (!RESOURCES[key] || RESOURCES[key] != oldManifest[key]) {{
          await contentCache.delete(request);
        }}
      }}
      // Populate the cache with the app shell TEMP files, potentially overwriting
      // cache files preserved above.
      for (var request of await tempCache.keys()) {{
        var response = await tempCache.match(request);
        await contentCache.put(request, response);
      }}
      await caches.delete(TEMP);
      // Save the manifest to make future upgrades efficient.
      await manifestCache.put('manifest', new Response(JSON.stringify(RESOURCES)));
      return;
    }} catch (err) {{
      // On an unhandled exception the state of the cache cannot be guaranteed.
      console.error('Failed to upgrade service worker: ' + err);
      await caches.delete(CACHE_NAME);
      await caches.delete(TEMP);
      await caches.delete(MANIFEST);
    }}
  }}());
}});

// The fetch handler redirects requests for RESOURCE files to the service
// worker cache.
self.addEventListener("fetch", (event) => {{
  if (event.request.method !== 'GET') {{
    return;
  }}
  var key = resourceKey(event.request.url);
  // If the URL is not the RESOURCE list then return to signal that the
  // browser should take over.
  if (!RESOURCES[key]) {{
    return;
  }}
  // If the URL is the index.html, perform an online-first request.
  if (key == '/') {{
    return onlineFirst(event);
  }}
  event.respondWith(caches.open(CACHE_NAME)
    .then((cache) => {{
      return cache.match(event.request).then((response) => {{
        // Either respond with the cached resource, or perform a fetch and
        // lazily populate the cache.
        return response || fetch(event.request).then((response) => {{
          cache.put(event.request, response.clone());
          return response;
        }});
      }})
    }})
  );
}});

self.addEventListener('message', (event) => {{
  // SkipWaiting can be used to immediately activate a waiting service worker.
  // This will also require a page refresh triggered by the main worker.
  if (event.data === 'skipWaiting') {{
    self.skipWaiting();
    return;
  }}
  if (event.data === 'downloadOffline') {{
    downloadOffline();
    return;
  }}
}});

// Download offline will check the RESOURCES for all files not in the cache
// and populate them.
async function downloadOffline() {{
  var resources = [];
  var contentCache = await caches.open(CACHE_NAME);
  var currentContent = {{}};
  for (var request of await contentCache.keys()) {{
    currentContent[resourceKey(request.url)] = true;
  }}
  for (var url of Object.keys(RESOURCES)) {{
    if (!currentContent[url]) {{
      resources.push(url);
    }}
  }}
  return contentCache.addAll(resources);
}}

// Attempt to download the resource online before falling back to
// the offline cache.
function onlineFirst(event) {{
  return event.respondWith(
    fetch(event.request).then((response) => {{
      return caches.open(CACHE_NAME).then((cache) => {{
        cache.put(event.request, response.clone());
        return response;
      }});
    }}).catch((error) => {{
      return caches.open(CACHE_NAME).then((cache) => {{
        return cache.match(event.request).then((response) => {{
          if (response != null) {{
            return response;
          }}
          throw error;
        }});
      }});
    }})
  );
}}
"""
